"""persistence gateway: serialize, store and defensively hydrate state.

the engine only needs load()/save() of opaque bytes. anything unreadable is
treated as absent and replaced by a freshly seeded session; storage trouble
is logged, never fatal.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .activation import resolve_activation
from .engine import create_session
from .models import STATE_VERSION, BranchingState, validate_session

logger = logging.getLogger(__name__)


# --- configuration ---

STATE_FILE = "state.json"
STORAGE_DEBOUNCE_SECONDS = 0.4


def get_data_dir() -> Path:
    """directory holding persisted state ($RABBITHOLE_HOME or ~/.rabbithole)."""
    override = os.environ.get("RABBITHOLE_HOME")
    return Path(override).expanduser() if override else Path.home() / ".rabbithole"


# --- gateways ---

@runtime_checkable
class PersistenceGateway(Protocol):
    """byte-level storage for the serialized state."""

    def load(self) -> Optional[bytes]:
        ...

    def save(self, data: bytes) -> None:
        ...


class MemoryGateway:
    """keeps the last saved payload in memory (tests, ephemeral runs)."""

    def __init__(self, data: Optional[bytes] = None):
        self.data = data
        self.saves = 0

    def load(self) -> Optional[bytes]:
        return self.data

    def save(self, data: bytes) -> None:
        self.data = data
        self.saves += 1


class FileGateway:
    """json file on disk, replaced atomically on every save."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_data_dir() / STATE_FILE

    def load(self) -> Optional[bytes]:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def save(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


# --- serialization ---

def serialize_state(state: BranchingState) -> bytes:
    return json.dumps(state.to_dict()).encode("utf-8")


def deserialize_state(raw: Optional[bytes]) -> Optional[BranchingState]:
    """decode a persisted record; None for anything absent, corrupt or of another version."""
    if not raw:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"persisted state is not valid json: {e}")
        return None
    if not isinstance(data, dict):
        return None
    if data.get("version") != STATE_VERSION:
        logger.warning(f"ignoring persisted state with version {data.get('version')!r}")
        return None
    try:
        return BranchingState.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"persisted state is malformed: {e}")
        return None


# --- hydration ---

def ensure_session_available(state: BranchingState) -> BranchingState:
    """guarantee a valid active session with a usable branch and current node."""
    sound = {}
    for sid, session in state.sessions.items():
        problems = validate_session(session)
        if problems:
            logger.warning(f"dropping session {sid}: {'; '.join(problems)}")
            continue
        sound[sid] = session
    if len(sound) != len(state.sessions):
        state = replace(state, sessions=sound)

    session = state.sessions.get(state.active_session_id or "")
    if session is not None:
        branch = state.active_branch_node_ids
        if not branch or any(nid not in session.nodes for nid in branch):
            branch = (session.root_node_id,)
        current = state.current_node_id
        if current not in branch:
            current = branch[-1]
        session = resolve_activation(session, branch)
        return replace(
            state,
            sessions={**state.sessions, session.id: session},
            active_branch_node_ids=branch,
            current_node_id=current,
        )

    if state.sessions:
        first = next(iter(state.sessions.values()))
        branch = (first.root_node_id,)
        first = resolve_activation(first, branch)
        return replace(
            state,
            sessions={**state.sessions, first.id: first},
            active_session_id=first.id,
            active_branch_node_ids=branch,
            current_node_id=first.root_node_id,
        )

    return create_session()


def load_state(gateway: PersistenceGateway) -> BranchingState:
    """hydrate from storage, falling back to a fresh session on any failure."""
    try:
        raw = gateway.load()
    except OSError as e:
        logger.warning(f"failed to load state, starting fresh: {e}")
        raw = None
    state = deserialize_state(raw)
    if state is None:
        return create_session()
    try:
        return ensure_session_available(state)
    except (TypeError, ValueError) as e:
        logger.warning(f"persisted state could not be repaired, starting fresh: {e}")
        return create_session()


def persist_state(gateway: PersistenceGateway, state: BranchingState) -> bool:
    """write state through the gateway. returns True if saved."""
    try:
        gateway.save(serialize_state(state))
        return True
    except OSError as e:
        logger.warning(f"failed to persist state: {e}")
        return False


# --- debounce ---

class Debouncer:
    """coalesce rapid calls into one deferred call with the latest value.

    each schedule() cancels the pending timer and starts a new one. outside a
    running event loop the value just waits for flush().
    """

    def __init__(self, delay: float, callback: Callable[[Any], Any]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Any = None
        self._has_pending = False

    @property
    def pending(self) -> bool:
        return self._has_pending

    def schedule(self, value: Any) -> None:
        self._cancel_timer()
        self._pending = value
        self._has_pending = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._handle = loop.call_later(self.delay, self.flush)

    def flush(self) -> None:
        """run the pending call now, if any."""
        self._cancel_timer()
        if not self._has_pending:
            return
        value = self._pending
        self._pending = None
        self._has_pending = False
        self.callback(value)

    def cancel(self) -> None:
        self._cancel_timer()
        self._pending = None
        self._has_pending = False

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
