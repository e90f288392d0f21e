"""tests for the mutation engine."""

import pytest

from rabbithole.core.engine import (
    append_message,
    branch_through,
    create_child_node,
    create_empty_state,
    create_session,
    delete_session,
    focus_node,
    get_active_session,
    set_active_branch,
    set_active_session,
    set_current_node_id,
    set_node_header,
)
from rabbithole.core.history import build_history
from rabbithole.core.models import Message, Selection


@pytest.fixture
def long_reply_state(fresh_state):
    """root holding one assistant message long enough to branch twice."""
    root_id = get_active_session(fresh_state).root_node_id
    return append_message(fresh_state, root_id, Message.create("assistant", "abcdefghijklmnop"))


def _root_message(state):
    session = get_active_session(state)
    return session.root, session.root.messages[-1]


class TestSessions:
    """tests for session operations."""

    def test_empty_state(self):
        state = create_empty_state()
        assert state.sessions == {}
        assert get_active_session(state) is None

    def test_create_session(self, fresh_state):
        session = get_active_session(fresh_state)
        assert session is not None
        assert fresh_state.active_branch_node_ids == (session.root_node_id,)
        assert fresh_state.current_node_id == session.root_node_id

    def test_create_second_session_activates_it(self, fresh_state):
        first_id = fresh_state.active_session_id
        state = create_session(fresh_state)
        assert len(state.sessions) == 2
        assert state.active_session_id != first_id
        assert first_id in state.sessions

    def test_delete_unknown_is_noop(self, fresh_state):
        assert delete_session(fresh_state, "missing") is fresh_state

    def test_delete_inactive_keeps_branch(self, branched_state):
        state, *_ = branched_state
        other = create_session(state)
        other_id = other.active_session_id
        back = set_active_session(other, state.active_session_id)
        back = focus_node(back, state.current_node_id)
        after = delete_session(back, other_id)
        assert other_id not in after.sessions
        assert after.active_branch_node_ids == back.active_branch_node_ids
        assert after.current_node_id == back.current_node_id

    def test_delete_active_falls_back(self, fresh_state):
        first = get_active_session(fresh_state)
        state = create_session(fresh_state)
        state = delete_session(state, state.active_session_id)
        assert state.active_session_id == first.id
        assert state.active_branch_node_ids == (first.root_node_id,)
        assert state.current_node_id == first.root_node_id

    def test_delete_last_seeds_fresh_session(self, fresh_state):
        old_id = fresh_state.active_session_id
        state = delete_session(fresh_state, old_id)
        assert len(state.sessions) == 1
        assert old_id not in state.sessions
        assert get_active_session(state) is not None

    def test_set_active_session(self, branched_state):
        state, *_ = branched_state
        original = state.active_session_id
        other = create_session(state)
        back = set_active_session(other, original)
        root_id = back.sessions[original].root_node_id
        assert back.active_session_id == original
        assert back.active_branch_node_ids == (root_id,)
        assert back.current_node_id == root_id

    def test_set_active_session_unknown(self, fresh_state):
        assert set_active_session(fresh_state, "missing") is fresh_state


class TestNavigation:
    """tests for branch and focus operations."""

    def test_set_active_branch(self, branched_state):
        state, root_id, _, child_id = branched_state
        state = set_active_branch(state, [root_id])
        assert state.active_branch_node_ids == (root_id,)
        assert state.current_node_id == root_id
        state = set_active_branch(state, [root_id, child_id])
        assert state.current_node_id == child_id

    def test_set_active_branch_empty(self, fresh_state):
        assert set_active_branch(fresh_state, []) is fresh_state

    def test_set_current_on_branch(self, branched_state):
        state, root_id, _, _ = branched_state
        moved = set_current_node_id(state, root_id)
        assert moved.current_node_id == root_id
        assert moved.active_branch_node_ids == state.active_branch_node_ids

    def test_set_current_off_branch(self, branched_state):
        state, root_id, _, child_id = branched_state
        state = focus_node(state, root_id)
        assert set_current_node_id(state, child_id) is state

    def test_set_current_unknown(self, fresh_state):
        assert set_current_node_id(fresh_state, "missing") is fresh_state

    def test_focus_node(self, branched_state):
        state, root_id, _, child_id = branched_state
        state = focus_node(state, root_id)
        assert state.active_branch_node_ids == (root_id,)
        state = focus_node(state, child_id)
        assert state.active_branch_node_ids == (root_id, child_id)
        assert state.current_node_id == child_id

    def test_focus_unknown(self, fresh_state):
        assert focus_node(fresh_state, "missing") is fresh_state

    def test_branch_through(self, branched_state):
        state, root_id, _, child_id = branched_state
        assert branch_through(state, root_id) == (root_id,)
        assert branch_through(state, child_id) == (root_id, child_id)
        off = focus_node(state, root_id)
        assert branch_through(off, child_id) == (root_id, child_id)
        assert branch_through(off, "missing") == ()


class TestAppendMessage:
    """tests for append_message."""

    def test_append(self, fresh_state):
        root_id = get_active_session(fresh_state).root_node_id
        state = append_message(fresh_state, root_id, Message.create("user", "hi"))
        assert [m.text for m in get_active_session(state).root.messages] == ["hi"]
        assert get_active_session(fresh_state).root.messages == ()

    def test_append_unknown_node(self, fresh_state):
        assert append_message(fresh_state, "missing", Message.create("user", "hi")) is fresh_state

    def test_append_to_inactive_session(self, fresh_state):
        """session_id targets a session that is no longer active."""
        first = get_active_session(fresh_state)
        state = create_session(fresh_state)
        state = append_message(
            state, first.root_node_id, Message.create("assistant", "late"), session_id=first.id
        )
        assert state.active_session_id != first.id
        assert state.sessions[first.id].root.messages[-1].text == "late"


class TestCreateChildNode:
    """tests for branching from a selection."""

    def test_child_shape(self, branched_state):
        state, root_id, message_id, child_id = branched_state
        session = get_active_session(state)
        root = session.nodes[root_id]
        child = session.nodes[child_id]
        assert child.depth == 1
        assert child.parent.parent_node_id == root_id
        assert child.parent.parent_message_id == message_id
        assert child.parent.selection == Selection("Hi", 0, 2)
        assert root.children_ids == (child_id,)
        assert [m.text for m in child.messages] == ["Tell me more"]
        assert state.active_branch_node_ids == (root_id, child_id)
        assert state.current_node_id == child_id

    def test_highlight_recorded(self, branched_state):
        state, root_id, message_id, child_id = branched_state
        message = get_active_session(state).nodes[root_id].find_message(message_id)
        (highlight,) = message.highlights
        assert highlight.child_node_id == child_id
        assert (highlight.start_offset, highlight.end_offset) == (0, 2)
        assert highlight.text == "Hi"

    def test_overlap_rejected(self, long_reply_state):
        """a selection touching an existing highlight leaves the state alone."""
        root, message = _root_message(long_reply_state)
        state, first = create_child_node(long_reply_state, root.id, message.id, Selection("cdefgh", 2, 8))
        assert first is not None
        root, message = _root_message(focus_node(state, root.id))
        after, second = create_child_node(state, root.id, message.id, Selection("fghij", 5, 10))
        assert second is None
        assert after is state
        session = get_active_session(after)
        assert len(session.nodes) == 2
        assert len(session.nodes[root.id].find_message(message.id).highlights) == 1

    def test_adjacent_allowed(self, long_reply_state):
        root, message = _root_message(long_reply_state)
        state, first = create_child_node(long_reply_state, root.id, message.id, Selection("cdefgh", 2, 8))
        state, second = create_child_node(state, root.id, message.id, Selection("ij", 8, 10))
        assert first and second
        assert get_active_session(state).nodes[root.id].children_ids == (first, second)

    def test_id_collision_rejected(self, long_reply_state, monkeypatch):
        """a freshly generated id that already names a node is refused."""
        root, message = _root_message(long_reply_state)
        monkeypatch.setattr("rabbithole.core.engine.generate_id", lambda: root.id)
        state, child_id = create_child_node(long_reply_state, root.id, message.id, Selection("ab", 0, 2))
        assert child_id is None
        assert state is long_reply_state

    @pytest.mark.parametrize("start,end", [(3, 3), (5, 2), (-1, 2), (10, 99)])
    def test_bad_bounds_rejected(self, long_reply_state, start, end):
        root, message = _root_message(long_reply_state)
        state, child_id = create_child_node(long_reply_state, root.id, message.id, Selection("x", start, end))
        assert child_id is None
        assert state is long_reply_state

    def test_unknown_parent_or_message(self, long_reply_state):
        root, message = _root_message(long_reply_state)
        sel = Selection("ab", 0, 2)
        assert create_child_node(long_reply_state, "missing", message.id, sel) == (long_reply_state, None)
        assert create_child_node(long_reply_state, root.id, "missing", sel) == (long_reply_state, None)

    def test_grandchild_branch_from_off_branch_parent(self, branched_state):
        """branching under a node off the active branch follows that node's root path."""
        state, root_id, _, child_id = branched_state
        child = get_active_session(state).nodes[child_id]
        state = focus_node(state, root_id)
        state, grandchild_id = create_child_node(
            state, child_id, child.messages[0].id, Selection("Tell", 0, 4)
        )
        assert state.active_branch_node_ids == (root_id, child_id, grandchild_id)
        assert get_active_session(state).nodes[grandchild_id].depth == 2
        assert get_active_session(state).nodes[grandchild_id].messages == ()


class TestSetNodeHeader:
    """tests for set_node_header."""

    def test_root_header_is_title(self, greeting_state):
        session = get_active_session(greeting_state)
        assert session.root.header == "Greeting"
        assert session.title == "Greeting"

    def test_trims(self, branched_state):
        state, _, _, child_id = branched_state
        state = set_node_header(state, child_id, "  Hi topic  ")
        session = get_active_session(state)
        assert session.nodes[child_id].header == "Hi topic"
        assert session.title == "Greeting"

    def test_blank_clears(self, greeting_state):
        root_id = get_active_session(greeting_state).root_node_id
        state = set_node_header(greeting_state, root_id, "   ")
        session = get_active_session(state)
        assert session.root.header is None
        assert session.title is None

    def test_idempotent(self, greeting_state):
        root_id = get_active_session(greeting_state).root_node_id
        assert set_node_header(greeting_state, root_id, "Greeting") is greeting_state
        assert set_node_header(greeting_state, root_id, " Greeting ") is greeting_state

    def test_unknown_node(self, greeting_state):
        assert set_node_header(greeting_state, "missing", "x") is greeting_state


class TestScenario:
    """end-to-end branch and history walk."""

    def test_branch_history(self, branched_state):
        state, _, _, child_id = branched_state
        lines = build_history(state, state.active_branch_node_ids)
        assert [(l.role, l.text) for l in lines] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
            ("user", '[Branch created from previous text: "Hi"]'),
            ("user", "Tell me more"),
        ]

    def test_focus_root_then_child(self, branched_state):
        state, root_id, message_id, child_id = branched_state
        state = focus_node(state, root_id)
        session = get_active_session(state)
        assert not session.nodes[root_id].find_message(message_id).highlights[0].is_active
        assert build_history(state, state.active_branch_node_ids)[-1].text == "Hi there"

    def test_inputs_not_mutated(self, greeting_state):
        before = greeting_state.to_dict()
        root = get_active_session(greeting_state).root
        create_child_node(greeting_state, root.id, root.messages[1].id, Selection("Hi", 0, 2))
        set_node_header(greeting_state, root.id, "other")
        append_message(greeting_state, root.id, Message.create("user", "again"))
        delete_session(greeting_state, greeting_state.active_session_id)
        assert greeting_state.to_dict() == before
