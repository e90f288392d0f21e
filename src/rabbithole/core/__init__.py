"""core primitives shared between frontends."""

from .models import (
    BranchingState,
    Highlight,
    Message,
    Node,
    ParentLink,
    Selection,
    Session,
    STATE_VERSION,
    children_of,
    create_session_record,
    generate_id,
    is_descendant_reachable,
    path_to_root,
    validate_session,
)
from .offsets import overlaps, render_segments, to_canonical
from .activation import highlight_is_active, resolve_activation
from .engine import (
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
from .history import HistoryLine, branch_note, build_history
from .persistence import (
    Debouncer,
    FileGateway,
    MemoryGateway,
    PersistenceGateway,
    deserialize_state,
    ensure_session_available,
    load_state,
    persist_state,
    serialize_state,
)
from .client import (
    ClaudeClient,
    ClientProtocol,
    CompletionError,
    CompletionResult,
    HttpChatClient,
    MockClient,
)
from .store import BranchingStore

__all__ = [
    # models
    "BranchingState",
    "Highlight",
    "Message",
    "Node",
    "ParentLink",
    "Selection",
    "Session",
    "STATE_VERSION",
    "children_of",
    "create_session_record",
    "generate_id",
    "is_descendant_reachable",
    "path_to_root",
    "validate_session",
    # offsets
    "overlaps",
    "render_segments",
    "to_canonical",
    # activation
    "highlight_is_active",
    "resolve_activation",
    # engine
    "append_message",
    "branch_through",
    "create_child_node",
    "create_empty_state",
    "create_session",
    "delete_session",
    "focus_node",
    "get_active_session",
    "set_active_branch",
    "set_active_session",
    "set_current_node_id",
    "set_node_header",
    # history
    "HistoryLine",
    "branch_note",
    "build_history",
    # persistence
    "Debouncer",
    "FileGateway",
    "MemoryGateway",
    "PersistenceGateway",
    "deserialize_state",
    "ensure_session_available",
    "load_state",
    "persist_state",
    "serialize_state",
    # client
    "ClaudeClient",
    "ClientProtocol",
    "CompletionError",
    "CompletionResult",
    "HttpChatClient",
    "MockClient",
    # store
    "BranchingStore",
]
