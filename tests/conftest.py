"""pytest fixtures for rabbithole tests."""

import pytest
import tempfile
from pathlib import Path

from rabbithole.core.client import CompletionResult
from rabbithole.core.engine import (
    append_message,
    create_child_node,
    create_session,
    get_active_session,
)
from rabbithole.core.models import Message, Selection
from rabbithole.core.persistence import MemoryGateway
from rabbithole.core.store import apply_completion


@pytest.fixture
def temp_dir():
    """temporary directory that cleans up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fresh_state():
    """state holding one empty session."""
    return create_session()


@pytest.fixture
def greeting_state(fresh_state):
    """root node with "Hello" answered by "Hi there", header "Greeting"."""
    session = get_active_session(fresh_state)
    root_id = session.root_node_id
    state = append_message(fresh_state, root_id, Message.create("user", "Hello"))
    return apply_completion(
        state, session.id, root_id, CompletionResult(header="Greeting", message="Hi there")
    )


@pytest.fixture
def branched_state(greeting_state):
    """greeting_state plus a child branched from "Hi" with "Tell me more".

    returns (state, root_id, assistant_message_id, child_id).
    """
    session = get_active_session(greeting_state)
    root = session.root
    assistant = root.messages[1]
    state, child_id = create_child_node(
        greeting_state,
        parent_node_id=root.id,
        parent_message_id=assistant.id,
        selection=Selection(text="Hi", start_offset=0, end_offset=2),
        initial_message=Message.create("user", "Tell me more"),
    )
    assert child_id is not None
    return state, root.id, assistant.id, child_id


@pytest.fixture
def memory_gateway():
    return MemoryGateway()
