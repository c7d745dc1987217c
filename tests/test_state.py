"""Tests for llm_council/discussion/state.py."""

import json

import pytest

from config.config_loader import RoleConfig
from llm_council.discussion.state import (
    DiscussionConfig,
    DiscussionMessage,
    DiscussionState,
    DiscussionStatus,
    InvalidTransition,
    can_transition,
    transition,
)
from llm_council.roles import role_from_config

ROLE = role_from_config(RoleConfig("skeptic", "Skeptic", "You question every assumption carefully.", "openai/gpt-4o"))


def test_running_can_complete_or_terminate():
    assert transition(DiscussionStatus.RUNNING, DiscussionStatus.COMPLETED) is DiscussionStatus.COMPLETED
    assert transition(DiscussionStatus.RUNNING, DiscussionStatus.TERMINATED) is DiscussionStatus.TERMINATED


@pytest.mark.parametrize("terminal", [DiscussionStatus.COMPLETED, DiscussionStatus.TERMINATED])
@pytest.mark.parametrize("target", list(DiscussionStatus))
def test_terminal_states_have_no_exit(terminal, target):
    assert not can_transition(terminal, target)
    with pytest.raises(InvalidTransition):
        transition(terminal, target)


def test_running_cannot_stay_running():
    with pytest.raises(InvalidTransition):
        transition(DiscussionStatus.RUNNING, DiscussionStatus.RUNNING)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"topic": "  "},
        {"roles": []},
        {"max_rounds": 0},
        {"consensus_threshold": 1.5},
    ],
)
def test_config_validation(kwargs):
    params = {"topic": "Remote work", "roles": [ROLE], **kwargs}
    with pytest.raises(ValueError):
        DiscussionConfig(**params)


def test_state_defaults():
    state = DiscussionState(id="d1", config=DiscussionConfig("Remote work", [ROLE]))
    assert state.current_round == 1
    assert state.current_speaker_index == 0
    assert state.status is DiscussionStatus.RUNNING
    assert state.is_running
    assert state.config.max_rounds == 20
    assert state.config.consensus_threshold == 0.7


def test_state_to_dict_is_json_serializable():
    state = DiscussionState(id="d1", config=DiscussionConfig("Remote work", [ROLE]))
    state.messages.append(DiscussionMessage("m1", 1, "skeptic", "Skeptic", "openai/gpt-4o", "Hmm.", 1.0))
    raw = state.to_dict()
    assert json.loads(json.dumps(raw)) == raw
    assert raw["status"] == "running"
    assert raw["roles"] == [{"id": "skeptic", "name": "Skeptic", "model": "openai/gpt-4o"}]
    assert raw["messages"][0]["content"] == "Hmm."
