from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from queuedesk.core.config import Settings, settings


def create_engine_with_settings(app_settings: Settings) -> Engine:
    """Build the engine for DATABASE_URL with pool options applied."""
    backend = make_url(app_settings.DATABASE_URL).get_backend_name()

    if backend == "sqlite":
        # Sync endpoints run in a threadpool; sessions may cross threads.
        return create_engine(
            app_settings.DATABASE_URL,
            connect_args={"check_same_thread": False},
        )

    connect_args = {}
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"

    return create_engine(
        app_settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=app_settings.DB_POOL_SIZE,
        max_overflow=app_settings.DB_MAX_OVERFLOW,
        pool_timeout=app_settings.DB_POOL_TIMEOUT,
        pool_recycle=app_settings.DB_POOL_RECYCLE,
        connect_args=connect_args,
    )


engine = create_engine_with_settings(settings)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
