"""
Tests for the queue aggregate's pure transitions.

Coverage:
- Check-in order and duplicate rejection
- Call-next head selection and re-indexing
- Completion, no-show requeue, priority, skip
- Wait estimation
"""

from datetime import date
from uuid import uuid4

import pytest

from queuedesk.services.queue_errors import (
    AlreadyQueuedError,
    EmptyQueueError,
    NotCurrentTokenError,
    TokenInServiceError,
    TokenNotQueuedError,
)
from queuedesk.services.queue_state import QueueSnapshot, estimate_wait_minutes


A, B, C, D = uuid4(), uuid4(), uuid4(), uuid4()


def _queue(*active, current=None) -> QueueSnapshot:
    return QueueSnapshot(
        organization_id=uuid4(),
        service_id=uuid4(),
        queue_date=date(2026, 3, 2),
        active_tokens=tuple(active),
        current_token=current,
        id=uuid4(),
        version=1,
    )


# =============================================================================
# Check-in
# =============================================================================

def test_check_in_appends_in_call_order():
    queue = _queue()
    for token in (A, B, C):
        queue = queue.with_checked_in(token)

    assert queue.active_tokens == (A, B, C)
    assert [t.position for t in queue.tokens()] == [1, 2, 3]


def test_check_in_rejects_waiting_and_serving_tokens():
    queue = _queue(A, current=B)

    with pytest.raises(AlreadyQueuedError):
        queue.with_checked_in(A)
    with pytest.raises(AlreadyQueuedError):
        queue.with_checked_in(B)
    assert queue.active_tokens == (A,)


# =============================================================================
# Call next
# =============================================================================

def test_call_next_pops_head_and_reindexes():
    queue, called = _queue(A, B, C).with_next_called()

    assert called == A
    assert queue.current_token == A
    assert queue.active_tokens == (B, C)
    assert queue.position_of(B) == 1
    assert queue.position_of(C) == 2


def test_call_next_on_empty_queue_raises():
    with pytest.raises(EmptyQueueError):
        _queue().with_next_called()


def test_call_next_while_serving_raises():
    with pytest.raises(TokenInServiceError):
        _queue(B, current=A).with_next_called()


# =============================================================================
# Complete
# =============================================================================

def test_complete_moves_current_to_completed():
    queue = _queue(B, current=A).with_completed(A)

    assert queue.current_token is None
    assert queue.completed_tokens == (A,)
    assert queue.total_served == 1
    assert queue.active_tokens == (B,)


def test_complete_requires_current_token():
    with pytest.raises(NotCurrentTokenError):
        _queue(B, current=A).with_completed(B)


# =============================================================================
# No-show
# =============================================================================

def test_no_show_of_current_requeues_at_tail():
    queue = _queue(B, C, current=A).with_no_show(A)

    assert queue.current_token is None
    assert queue.active_tokens == (B, C, A)
    assert queue.no_show_tokens == (A,)
    assert queue.no_show_count(A) == 1


def test_no_show_of_waiting_token_appears_once_at_tail():
    queue = _queue(A, B, C).with_no_show(A)

    assert queue.active_tokens == (B, C, A)
    assert queue.active_tokens.count(A) == 1


def test_no_show_without_requeue_leaves_the_line():
    queue = _queue(B, current=A).with_no_show(A, requeue=False)

    assert queue.active_tokens == (B,)
    assert queue.current_token is None
    assert queue.no_show_tokens == (A,)


def test_no_show_of_unknown_token_raises():
    with pytest.raises(TokenNotQueuedError):
        _queue(A).with_no_show(D)


# =============================================================================
# Prioritize / skip
# =============================================================================

def test_prioritize_moves_to_front_keeping_relative_order():
    queue = _queue(A, B, C, D).with_prioritized(C)

    assert queue.active_tokens == (C, A, B, D)


def test_prioritize_is_idempotent():
    once = _queue(A, B, C).with_prioritized(C)
    twice = once.with_prioritized(C)

    assert once == twice


def test_prioritize_requires_waiting_token():
    with pytest.raises(TokenNotQueuedError):
        _queue(B, current=A).with_prioritized(A)


def test_skip_removes_permanently():
    queue = _queue(A, B, C).with_skipped(B)

    assert queue.active_tokens == (A, C)
    assert B not in queue.completed_tokens
    assert B not in queue.no_show_tokens


def test_skip_of_current_token_ends_service():
    queue = _queue(B, current=A).with_skipped(A)

    assert queue.current_token is None
    assert queue.active_tokens == (B,)
    assert queue.total_served == 0


def test_transitions_do_not_mutate_the_original():
    original = _queue(A, B)
    original.with_prioritized(B)
    original.with_skipped(A)

    assert original.active_tokens == (A, B)


# =============================================================================
# Wait estimation
# =============================================================================

def test_estimate_wait_minutes():
    assert estimate_wait_minutes(3, 10) == 30
    assert estimate_wait_minutes(0, 10) == 0
    assert estimate_wait_minutes(-1, 10) == 0


def test_tokens_carry_prioritized_flag():
    tokens = _queue(A, B).tokens(prioritized=[B])

    assert [(t.appointment_id, t.position, t.prioritized) for t in tokens] == [
        (A, 1, False),
        (B, 2, True),
    ]
