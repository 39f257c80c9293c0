"""
Production State Machine - Legal workflow and video status transitions.

Conversation:
    draft -> awaiting_approval             brief recorded
    awaiting_approval -> awaiting_approval brief regenerated
    awaiting_approval -> in_production     launch
    completed | failed -> in_production    revision or retry
    in_production -> completed | failed    callback, timeout, admin
    in_production -> awaiting_approval     cancel

Video:
    processing -> completed | failed | cancelled   (terminal, one-way)
"""

from orchestrator.db.models import Conversation, Video
from orchestrator.exceptions import InvalidTransitionError
from orchestrator.models.api import VideoStatus, WorkflowState

WORKFLOW_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.DRAFT: frozenset({WorkflowState.AWAITING_APPROVAL}),
    WorkflowState.AWAITING_APPROVAL: frozenset(
        {WorkflowState.AWAITING_APPROVAL, WorkflowState.IN_PRODUCTION}
    ),
    WorkflowState.IN_PRODUCTION: frozenset(
        {WorkflowState.COMPLETED, WorkflowState.FAILED, WorkflowState.AWAITING_APPROVAL}
    ),
    WorkflowState.COMPLETED: frozenset(
        {WorkflowState.IN_PRODUCTION, WorkflowState.AWAITING_APPROVAL}
    ),
    WorkflowState.FAILED: frozenset(
        {WorkflowState.IN_PRODUCTION, WorkflowState.AWAITING_APPROVAL}
    ),
}

VIDEO_TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.PROCESSING: frozenset(
        {VideoStatus.COMPLETED, VideoStatus.FAILED, VideoStatus.CANCELLED}
    ),
    VideoStatus.COMPLETED: frozenset(),
    VideoStatus.FAILED: frozenset(),
    VideoStatus.CANCELLED: frozenset(),
}

# States a launch may start from
LAUNCHABLE_STATES = frozenset(
    {WorkflowState.AWAITING_APPROVAL, WorkflowState.COMPLETED, WorkflowState.FAILED}
)


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    return target in WORKFLOW_TRANSITIONS[current]


def transition_conversation(conversation: Conversation, target: WorkflowState) -> WorkflowState:
    """Move a conversation to target, raising InvalidTransitionError if illegal.

    Returns the previous state so callers can restore it on rollback.
    """
    current = conversation.workflow_state
    if not can_transition(current, target):
        raise InvalidTransitionError("conversation", current.value, target.value)
    conversation.workflow_state = target
    return current


def transition_video(video: Video, target: VideoStatus) -> None:
    current = video.status
    if target not in VIDEO_TRANSITIONS[current]:
        raise InvalidTransitionError("video", current.value, target.value)
    video.status = target
