"""mutation engine: every state transition the app can make.

each operation takes a BranchingState and returns a new one; the input is
never touched. operations that name an unknown session, node or message
return the input unchanged rather than raising, so callers compare the
returned state (or returned id) to learn whether anything happened.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Sequence

from .activation import resolve_activation
from .models import (
    BranchingState,
    Highlight,
    Message,
    Node,
    ParentLink,
    Selection,
    Session,
    create_session_record,
    generate_id,
    path_to_root,
)
from .offsets import overlaps

logger = logging.getLogger(__name__)


def create_empty_state() -> BranchingState:
    return BranchingState()


def get_active_session(state: BranchingState) -> Optional[Session]:
    if not state.active_session_id:
        return None
    return state.sessions.get(state.active_session_id)


def _install(
    state: BranchingState,
    session: Session,
    branch: Sequence[str],
    current_node_id: Optional[str],
) -> BranchingState:
    """make session active with the given branch, re-resolving highlights."""
    branch = tuple(branch)
    session = resolve_activation(session, branch)
    return replace(
        state,
        sessions={**state.sessions, session.id: session},
        active_session_id=session.id,
        active_branch_node_ids=branch,
        current_node_id=current_node_id,
    )


def _replace_session(state: BranchingState, session: Session) -> BranchingState:
    """swap in an updated session without moving the active branch."""
    if session.id == state.active_session_id:
        session = resolve_activation(session, state.active_branch_node_ids)
    return replace(state, sessions={**state.sessions, session.id: session})


def _target_session(state: BranchingState, session_id: Optional[str]) -> Optional[Session]:
    if session_id is None:
        return get_active_session(state)
    return state.sessions.get(session_id)


# --- sessions ---

def create_session(state: Optional[BranchingState] = None) -> BranchingState:
    """add a fresh session and make it active."""
    if state is None:
        state = create_empty_state()
    session = create_session_record()
    logger.debug(f"created session {session.id}")
    return _install(state, session, [session.root_node_id], session.root_node_id)


def delete_session(state: BranchingState, session_id: str) -> BranchingState:
    """remove a session, falling back to another (or a fresh one) if it was active."""
    if session_id not in state.sessions:
        return state

    remaining = {sid: s for sid, s in state.sessions.items() if sid != session_id}
    if not remaining:
        return create_session()

    without = replace(state, sessions=remaining)
    if session_id != state.active_session_id:
        return without

    fallback = next(iter(remaining.values()))
    return _install(without, fallback, [fallback.root_node_id], fallback.root_node_id)


def set_active_session(state: BranchingState, session_id: str) -> BranchingState:
    session = state.sessions.get(session_id)
    if session is None:
        return state
    return _install(state, session, [session.root_node_id], session.root_node_id)


# --- navigation ---

def set_active_branch(state: BranchingState, branch: Sequence[str]) -> BranchingState:
    """replace the active branch wholesale.

    the branch is trusted to be a root-to-node chain in the active session.
    """
    if not branch:
        return state
    session = get_active_session(state)
    if session is None:
        return state
    return _install(state, session, branch, branch[-1])


def set_current_node_id(state: BranchingState, node_id: str) -> BranchingState:
    """move the input focus to another node already on the active branch."""
    session = get_active_session(state)
    if session is None or node_id not in session.nodes:
        return state
    if node_id not in state.active_branch_node_ids:
        return state
    if state.current_node_id == node_id:
        return state
    return replace(state, current_node_id=node_id)


def focus_node(state: BranchingState, node_id: str) -> BranchingState:
    """jump to any node of the active session, rebuilding the branch from its root path."""
    session = get_active_session(state)
    if session is None:
        return state
    branch = path_to_root(session, node_id)
    if not branch:
        return state
    return _install(state, session, branch, node_id)


def branch_through(state: BranchingState, node_id: str) -> tuple[str, ...]:
    """active branch cut just after node_id, or its root path if it is off-branch."""
    branch = state.active_branch_node_ids
    if node_id in branch:
        return branch[: branch.index(node_id) + 1]
    session = get_active_session(state)
    if session is None:
        return ()
    return path_to_root(session, node_id)


# --- content ---

def append_message(
    state: BranchingState,
    node_id: str,
    message: Message,
    session_id: Optional[str] = None,
) -> BranchingState:
    """append a message to a node (of the active session unless session_id is given)."""
    session = _target_session(state, session_id)
    if session is None:
        return state
    node = session.nodes.get(node_id)
    if node is None:
        logger.debug(f"append to unknown node {node_id} ignored")
        return state
    updated = replace(node, messages=node.messages + (message,))
    return _replace_session(state, session.with_nodes(updated).touch())


def create_child_node(
    state: BranchingState,
    parent_node_id: str,
    parent_message_id: str,
    selection: Selection,
    initial_message: Optional[Message] = None,
) -> tuple[BranchingState, Optional[str]]:
    """branch off a span of a message.

    returns the new state and the child's id, or the untouched state and
    None when the parent, the message, or the selection is rejected.
    """
    session = get_active_session(state)
    if session is None:
        return state, None
    parent = session.nodes.get(parent_node_id)
    if parent is None:
        return state, None
    message = parent.find_message(parent_message_id)
    if message is None:
        return state, None

    start, end = selection.start_offset, selection.end_offset
    if not 0 <= start < end <= len(message.text):
        logger.debug(f"selection [{start}, {end}) outside message {message.id}")
        return state, None
    if overlaps(start, end, message.highlights):
        logger.debug(f"selection [{start}, {end}) overlaps a highlight on {message.id}")
        return state, None

    child_id = generate_id()
    # a reused id would overwrite an existing node
    if child_id in session.nodes:
        return state, None

    highlight = Highlight(
        id=generate_id(),
        child_node_id=child_id,
        text=selection.text,
        start_offset=start,
        end_offset=end,
    )
    updated_message = message.with_highlight(highlight)
    updated_parent = replace(
        parent,
        messages=tuple(updated_message if m.id == message.id else m for m in parent.messages),
        children_ids=parent.children_ids + (child_id,),
    )
    child = Node(
        id=child_id,
        depth=parent.depth + 1,
        header=None,
        messages=(initial_message,) if initial_message else (),
        parent=ParentLink(
            parent_node_id=parent.id,
            parent_message_id=message.id,
            selection=selection,
        ),
    )

    branch = branch_through(state, parent.id) + (child_id,)
    updated_session = session.with_nodes(updated_parent, child).touch()
    logger.debug(f"created child {child_id} at depth {child.depth} under {parent.id}")
    return _install(state, updated_session, branch, child_id), child_id


def set_node_header(
    state: BranchingState,
    node_id: str,
    header: Optional[str],
    session_id: Optional[str] = None,
) -> BranchingState:
    """set a node's header; the root header doubles as the session title."""
    session = _target_session(state, session_id)
    if session is None:
        return state
    node = session.nodes.get(node_id)
    if node is None:
        return state

    normalized = header.strip() if header is not None else None
    if not normalized:
        normalized = None
    is_root = node.id == session.root_node_id
    if node.header == normalized and (not is_root or session.title == normalized):
        return state

    updated = session.with_nodes(replace(node, header=normalized))
    if is_root:
        updated = replace(updated, title=normalized)
    return _replace_session(state, updated.touch())
