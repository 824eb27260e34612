"""Customer store: the lifetime no-show counter."""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from queuedesk.db.models import Customer
from queuedesk.services.queue_repository import storage_errors

logger = logging.getLogger(__name__)


def increment_no_show_count(db: Session, customer_id: UUID) -> bool:
    """Atomically add one no-show. Returns False for an unknown customer."""
    with storage_errors("increment no-show count"):
        result = db.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(no_show_count=Customer.no_show_count + 1)
            .execution_options(synchronize_session=False)
        )
    if not result.rowcount:
        logger.warning("No-show recorded for unknown customer %s", customer_id)
        return False
    return True
