"""live state owner: the single writer of BranchingState.

wraps the pure engine with what a running app needs: hydration, debounced
persistence, per-node loading flags, and the prompt send flows that talk to
a completion provider.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .client import ClientProtocol, CompletionResult
from .engine import (
    append_message,
    branch_through,
    create_child_node,
    create_empty_state,
    focus_node,
    get_active_session,
    set_current_node_id,
    set_node_header,
)
from .history import HistoryLine, build_history
from .models import BranchingState, Message, Selection, Session
from .offsets import to_canonical
from .persistence import (
    STORAGE_DEBOUNCE_SECONDS,
    Debouncer,
    MemoryGateway,
    PersistenceGateway,
    load_state,
    persist_state,
)

logger = logging.getLogger(__name__)


# --- configuration ---

FALLBACK_REASON = "The model request failed. Please try again."


def apply_completion(
    state: BranchingState,
    session_id: str,
    node_id: str,
    result: CompletionResult,
) -> BranchingState:
    """append the assistant reply; adopt its header only if the node has none yet."""
    state = append_message(
        state, node_id, Message.create("assistant", result.message), session_id=session_id
    )
    session = state.sessions.get(session_id)
    node = session.nodes.get(node_id) if session else None
    if node is None or node.header:
        return state
    header = (result.header or "").strip()
    if not header:
        return state
    return set_node_header(state, node_id, header, session_id=session_id)


def apply_failure(
    state: BranchingState,
    session_id: str,
    node_id: str,
    reason: str,
) -> BranchingState:
    """append a user-visible fallback reply describing the failure."""
    text = f"I couldn't fetch a response. {reason or FALLBACK_REASON}"
    return append_message(state, node_id, Message.create("assistant", text), session_id=session_id)


class BranchingStore:
    """owns the current snapshot and every side effect around it."""

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        debounce_seconds: float = STORAGE_DEBOUNCE_SECONDS,
    ):
        self.gateway = gateway if gateway is not None else MemoryGateway()
        self.state: BranchingState = create_empty_state()
        self.ready = False
        self.loading: set[str] = set()
        self._persisted: Optional[BranchingState] = None
        self._debouncer = Debouncer(debounce_seconds, self._persist)

    @property
    def session(self) -> Optional[Session]:
        return get_active_session(self.state)

    @property
    def persist_pending(self) -> bool:
        return self._debouncer.pending

    def is_node_loading(self, node_id: str) -> bool:
        return node_id in self.loading

    # --- lifecycle ---

    def hydrate(self) -> BranchingState:
        """load persisted state (or seed a fresh session) and start persisting."""
        self.state = load_state(self.gateway)
        self.ready = True
        self._debouncer.schedule(self.state)
        return self.state

    def close(self) -> None:
        """write out any pending state."""
        self._debouncer.flush()

    def _persist(self, state: BranchingState) -> None:
        if state is self._persisted:
            return
        if persist_state(self.gateway, state):
            self._persisted = state

    # --- mutations ---

    def dispatch(self, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """run an engine operation against the current snapshot and install the result.

        returns the operation's allocated id for operations that return one
        (create_child_node), otherwise the new state.
        """
        result = operation(self.state, *args, **kwargs)
        extra: Any = None
        if isinstance(result, tuple):
            result, extra = result
        else:
            extra = result
        if result is not self.state:
            self.state = result
            if self.ready:
                self._debouncer.schedule(result)
        return extra

    def canonical_selection(
        self,
        node_id: str,
        message_id: str,
        text: str,
        rendered_start: int,
        rendered_end: int,
    ) -> Optional[Selection]:
        """translate a selection in rendered coordinates into canonical offsets."""
        session = self.session
        node = session.nodes.get(node_id) if session else None
        message = node.find_message(message_id) if node else None
        if message is None:
            return None
        return Selection(
            text=text,
            start_offset=to_canonical(rendered_start, message.highlights),
            end_offset=to_canonical(rendered_end, message.highlights),
        )

    # --- send flows ---

    async def send_prompt(
        self, node_id: str, text: str, client: ClientProtocol
    ) -> Optional[CompletionResult]:
        """append a user message to a node and ask the model for a reply.

        the node becomes the tail of the active branch and the current node.
        the reply is applied to the (session, node) the prompt was sent from,
        even if the user has moved elsewhere by the time it arrives.
        """
        text = (text or "").strip()
        session = self.session
        if not text or session is None or node_id not in session.nodes:
            return None

        branch = self.state.active_branch_node_ids
        if not branch or branch[-1] != node_id:
            self.dispatch(focus_node, node_id)
        else:
            self.dispatch(set_current_node_id, node_id)

        history = build_history(self.state, branch_through(self.state, node_id))
        self.dispatch(append_message, node_id, Message.create("user", text), session_id=session.id)
        return await self._request_reply(client, session.id, node_id, history, text)

    async def send_context_prompt(
        self,
        node_id: str,
        message_id: str,
        selection: Selection,
        prompt: str,
        client: ClientProtocol,
    ) -> Optional[str]:
        """branch from a selection with prompt as the child's first message.

        returns the child's id, or None if the branch was rejected.
        """
        prompt = (prompt or "").strip()
        session = self.session
        if not prompt or session is None:
            return None

        child_id = self.dispatch(
            create_child_node,
            node_id,
            message_id,
            selection,
            Message.create("user", prompt),
        )
        if child_id is None:
            return None

        # the model sees the branch up to the child, prompt excluded
        history = build_history(self.state, self.state.active_branch_node_ids, session_id=session.id)
        own = len(self.state.sessions[session.id].nodes[child_id].messages)
        history = history[: len(history) - own]

        await self._request_reply(client, session.id, child_id, history, prompt)
        return child_id

    async def _request_reply(
        self,
        client: ClientProtocol,
        session_id: str,
        node_id: str,
        history: list[HistoryLine],
        prompt: str,
    ) -> Optional[CompletionResult]:
        self.loading.add(node_id)
        try:
            result = await client.complete(history, prompt)
        except Exception as e:
            logger.exception(f"completion for node {node_id} failed")
            self.dispatch(apply_failure, session_id, node_id, str(e))
            return None
        finally:
            self.loading.discard(node_id)

        self.dispatch(apply_completion, session_id, node_id, result)
        return result
