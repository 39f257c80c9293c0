"""
Tests for workflow and video status transitions.
"""

import pytest

from orchestrator.exceptions import InvalidTransitionError
from orchestrator.models.api import VideoStatus, WorkflowState
from orchestrator.services.state_machine import (
    LAUNCHABLE_STATES,
    can_transition,
    transition_conversation,
    transition_video,
)
from tests.factories import create_mock_conversation, create_mock_video


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (WorkflowState.DRAFT, WorkflowState.AWAITING_APPROVAL),
        (WorkflowState.AWAITING_APPROVAL, WorkflowState.AWAITING_APPROVAL),
        (WorkflowState.AWAITING_APPROVAL, WorkflowState.IN_PRODUCTION),
        (WorkflowState.IN_PRODUCTION, WorkflowState.COMPLETED),
        (WorkflowState.IN_PRODUCTION, WorkflowState.FAILED),
        (WorkflowState.IN_PRODUCTION, WorkflowState.AWAITING_APPROVAL),
        (WorkflowState.COMPLETED, WorkflowState.IN_PRODUCTION),
        (WorkflowState.FAILED, WorkflowState.IN_PRODUCTION),
    ],
)
def test_legal_workflow_transitions(current: WorkflowState, target: WorkflowState) -> None:
    assert can_transition(current, target) is True


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (WorkflowState.DRAFT, WorkflowState.IN_PRODUCTION),
        (WorkflowState.IN_PRODUCTION, WorkflowState.IN_PRODUCTION),
        (WorkflowState.DRAFT, WorkflowState.COMPLETED),
        (WorkflowState.AWAITING_APPROVAL, WorkflowState.COMPLETED),
        (WorkflowState.COMPLETED, WorkflowState.FAILED),
    ],
)
def test_illegal_workflow_transitions(current: WorkflowState, target: WorkflowState) -> None:
    assert can_transition(current, target) is False


def test_transition_conversation_returns_previous_state() -> None:
    conversation = create_mock_conversation(workflow_state=WorkflowState.COMPLETED)

    previous = transition_conversation(conversation, WorkflowState.IN_PRODUCTION)

    assert previous == WorkflowState.COMPLETED
    assert conversation.workflow_state == WorkflowState.IN_PRODUCTION


def test_transition_conversation_rejects_double_launch() -> None:
    conversation = create_mock_conversation(workflow_state=WorkflowState.IN_PRODUCTION)

    with pytest.raises(InvalidTransitionError) as exc_info:
        transition_conversation(conversation, WorkflowState.IN_PRODUCTION)

    assert exc_info.value.status_code == 409
    assert conversation.workflow_state == WorkflowState.IN_PRODUCTION


def test_launchable_states() -> None:
    assert WorkflowState.DRAFT not in LAUNCHABLE_STATES
    assert WorkflowState.IN_PRODUCTION not in LAUNCHABLE_STATES
    for state in LAUNCHABLE_STATES:
        assert can_transition(state, WorkflowState.IN_PRODUCTION)


@pytest.mark.parametrize(
    "target", [VideoStatus.COMPLETED, VideoStatus.FAILED, VideoStatus.CANCELLED]
)
def test_processing_video_reaches_any_terminal(target: VideoStatus) -> None:
    conversation = create_mock_conversation()
    video = create_mock_video(conversation.id)

    transition_video(video, target)

    assert video.status == target


@pytest.mark.parametrize(
    "terminal", [VideoStatus.COMPLETED, VideoStatus.FAILED, VideoStatus.CANCELLED]
)
def test_terminal_video_is_final(terminal: VideoStatus) -> None:
    conversation = create_mock_conversation()
    video = create_mock_video(conversation.id, status=terminal)

    for target in VideoStatus:
        with pytest.raises(InvalidTransitionError):
            transition_video(video, target)
    assert video.status == terminal
