"""
Meeting State Machine.

    Draft ──> Processing ──> Review ──> Published
                  │  ^          │
                  v  │          └──> Processing (discard_review_edits=True)
                Failed

Any non-Deleted state may move to Deleted, which is terminal. Failed may be
retried (Failed -> Processing). Every transition appends a MeetingUpdate to
the meeting's ordered history.
"""

from datetime import datetime
from uuid import UUID

from .errors import InvalidTransitionError
from .logging import get_logger
from .models.enums import MeetingStatus
from .models.meeting import Meeting, MeetingUpdate, MeetingUpdateKind
from .utils import utcnow

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[MeetingStatus, frozenset[MeetingStatus]] = {
    MeetingStatus.DRAFT: frozenset({MeetingStatus.PROCESSING, MeetingStatus.DELETED}),
    MeetingStatus.PROCESSING: frozenset(
        {MeetingStatus.REVIEW, MeetingStatus.FAILED, MeetingStatus.DELETED}
    ),
    MeetingStatus.REVIEW: frozenset(
        {MeetingStatus.PUBLISHED, MeetingStatus.PROCESSING, MeetingStatus.DELETED}
    ),
    MeetingStatus.PUBLISHED: frozenset({MeetingStatus.DELETED}),
    MeetingStatus.FAILED: frozenset({MeetingStatus.PROCESSING, MeetingStatus.DELETED}),
    MeetingStatus.DELETED: frozenset(),
}


def can_transition(current: MeetingStatus, target: MeetingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def append_update(
    meeting: Meeting,
    kind: MeetingUpdateKind,
    message: str = '',
    actor_user_id: UUID | None = None,
    from_status: MeetingStatus | None = None,
    to_status: MeetingStatus | None = None,
    reason_code: str | None = None,
    now: datetime | None = None,
) -> MeetingUpdate:
    """Append one entry to the meeting history and return it."""
    update = MeetingUpdate(
        sequence=meeting.next_update_sequence,
        kind=kind,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        message=message,
        reason_code=reason_code,
        created_at=now or utcnow(),
    )
    meeting.updates.append(update)
    return update


def transition(
    meeting: Meeting,
    target: MeetingStatus,
    actor_user_id: UUID | None = None,
    message: str = '',
    reason_code: str | None = None,
    discard_review_edits: bool = False,
    now: datetime | None = None,
) -> MeetingUpdate:
    """
    Move a meeting to a new status and record the change.

    Args:
        meeting: Meeting to mutate (the caller persists it)
        target: Desired status
        actor_user_id: User responsible, if any
        message: Free-text note stored with the history entry
        reason_code: Failure reason (kept on the meeting for Failed)
        discard_review_edits: Required to send a meeting under review back
                              to processing
        now: Clock value for timestamps

    Returns:
        The appended MeetingUpdate

    Raises:
        InvalidTransitionError: Transition not allowed from the current status
    """
    current = meeting.status
    context = {
        'meeting_id': str(meeting.id),
        'from_status': current.value,
        'to_status': target.value,
    }
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move meeting from {current.value} to {target.value}", context=context
        )
    if (
        current == MeetingStatus.REVIEW
        and target == MeetingStatus.PROCESSING
        and not discard_review_edits
    ):
        raise InvalidTransitionError(
            'Reprocessing a meeting under review requires discard_review_edits=True',
            context=context,
        )

    now = now or utcnow()
    meeting.status = target
    meeting.updated_at = now

    if target == MeetingStatus.FAILED:
        meeting.failure_reason_code = reason_code
        meeting.failure_message = message or None
    elif target == MeetingStatus.PROCESSING:
        meeting.failure_reason_code = None
        meeting.failure_message = None
    elif target == MeetingStatus.REVIEW:
        meeting.processed_at = now

    kind = MeetingUpdateKind.STATUS_CHANGE
    if current == MeetingStatus.REVIEW and target == MeetingStatus.PROCESSING:
        kind = MeetingUpdateKind.REVIEW_DISCARDED

    update = append_update(
        meeting,
        kind,
        message=message,
        actor_user_id=actor_user_id,
        from_status=current,
        to_status=target,
        reason_code=reason_code,
        now=now,
    )
    logger.info(
        'lifecycle.transitioned',
        meeting_id=str(meeting.id),
        from_status=current.value,
        to_status=target.value,
        reason_code=reason_code,
    )
    return update
