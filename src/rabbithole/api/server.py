"""fastapi server for rabbithole.

exposes the branching engine as REST endpoints for a web frontend, plus a
stub /api/chat completion route.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..core.client import (
    ClaudeClient,
    ClientProtocol,
    HttpChatClient,
    MockClient,
    stub_completion,
)
from ..core.engine import (
    append_message,
    branch_through,
    create_child_node,
    create_session,
    delete_session,
    focus_node,
    set_active_branch,
    set_active_session,
    set_current_node_id,
    set_node_header,
)
from ..core.history import build_history
from ..core.models import (
    BranchingState,
    Highlight,
    Message,
    Node,
    ParentLink,
    Session,
)
from ..core.persistence import (
    STORAGE_DEBOUNCE_SECONDS,
    FileGateway,
    PersistenceGateway,
)
from ..core.store import BranchingStore


# --- pydantic models for api ---

class SelectionModel(BaseModel):
    text: str
    start_offset: int
    end_offset: int


class HighlightResponse(BaseModel):
    id: str
    child_node_id: str
    text: str
    start_offset: int
    end_offset: int
    is_active: bool

    @classmethod
    def from_highlight(cls, h: Highlight) -> "HighlightResponse":
        return cls(
            id=h.id,
            child_node_id=h.child_node_id,
            text=h.text,
            start_offset=h.start_offset,
            end_offset=h.end_offset,
            is_active=h.is_active,
        )


class MessageResponse(BaseModel):
    id: str
    role: str
    text: str
    created_at: str
    highlights: list[HighlightResponse]

    @classmethod
    def from_message(cls, m: Message) -> "MessageResponse":
        return cls(
            id=m.id,
            role=m.role,
            text=m.text,
            created_at=m.created_at,
            highlights=[HighlightResponse.from_highlight(h) for h in m.highlights],
        )


class ParentLinkResponse(BaseModel):
    parent_node_id: str
    parent_message_id: str
    selection: SelectionModel

    @classmethod
    def from_link(cls, link: ParentLink) -> "ParentLinkResponse":
        return cls(
            parent_node_id=link.parent_node_id,
            parent_message_id=link.parent_message_id,
            selection=SelectionModel(
                text=link.selection.text,
                start_offset=link.selection.start_offset,
                end_offset=link.selection.end_offset,
            ),
        )


class NodeResponse(BaseModel):
    """node in api response."""
    id: str
    depth: int
    header: Optional[str]
    parent: Optional[ParentLinkResponse]
    messages: list[MessageResponse]
    children_ids: list[str]
    loading: bool = False

    @classmethod
    def from_node(cls, node: Node, loading: bool = False) -> "NodeResponse":
        return cls(
            id=node.id,
            depth=node.depth,
            header=node.header,
            parent=ParentLinkResponse.from_link(node.parent) if node.parent else None,
            messages=[MessageResponse.from_message(m) for m in node.messages],
            children_ids=list(node.children_ids),
            loading=loading,
        )


class SessionResponse(BaseModel):
    id: str
    title: Optional[str]
    root_node_id: str
    nodes: dict[str, NodeResponse]
    created_at: str
    updated_at: str

    @classmethod
    def from_session(cls, session: Session, loading: set[str]) -> "SessionResponse":
        return cls(
            id=session.id,
            title=session.title,
            root_node_id=session.root_node_id,
            nodes={
                nid: NodeResponse.from_node(n, loading=nid in loading)
                for nid, n in session.nodes.items()
            },
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class StateResponse(BaseModel):
    """whole engine state in api response."""
    version: int
    active_session_id: Optional[str]
    active_branch_node_ids: list[str]
    current_node_id: Optional[str]
    sessions: dict[str, SessionResponse]

    @classmethod
    def from_state(cls, s: BranchingState, loading: set[str]) -> "StateResponse":
        return cls(
            version=s.version,
            active_session_id=s.active_session_id,
            active_branch_node_ids=list(s.active_branch_node_ids),
            current_node_id=s.current_node_id,
            sessions={sid: SessionResponse.from_session(x, loading) for sid, x in s.sessions.items()},
        )


class SessionListItem(BaseModel):
    """session summary for listing."""
    id: str
    title: Optional[str]
    node_count: int
    updated_at: str
    is_active: bool


class BranchUpdate(BaseModel):
    branch: list[str]


class MessageCreate(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class PromptRun(BaseModel):
    """request to send a prompt on a node."""
    text: str


class BranchCreate(BaseModel):
    """request to branch from a selection (offsets in rendered text)."""
    node_id: str
    message_id: str
    text: str
    start_offset: int
    end_offset: int
    prompt: Optional[str] = None


class BranchCreated(BaseModel):
    node_id: str
    state: StateResponse


class HeaderUpdate(BaseModel):
    header: Optional[str] = None


class HistoryLineModel(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class ChatRequest(BaseModel):
    history: list[HistoryLineModel] = []
    prompt: str = ""


class ChatResponse(BaseModel):
    header: str
    message: str


# --- app state ---

class AppState:
    """shared application state: the store plus the completion client."""

    def __init__(
        self,
        mock: bool = False,
        chat_url: Optional[str] = None,
        state_path: Optional[Path] = None,
        debounce_seconds: float = STORAGE_DEBOUNCE_SECONDS,
        gateway: Optional[PersistenceGateway] = None,
    ):
        self.store = BranchingStore(
            gateway if gateway is not None else FileGateway(state_path),
            debounce_seconds=debounce_seconds,
        )
        self.mock = mock
        self.chat_url = chat_url
        self._client: Optional[ClientProtocol] = None

    @property
    def client(self) -> ClientProtocol:
        if self._client is None:
            if self.mock:
                self._client = MockClient()
            elif self.chat_url:
                self._client = HttpChatClient(self.chat_url)
            else:
                self._client = ClaudeClient()
        return self._client


state = AppState()


def _state_response() -> StateResponse:
    return StateResponse.from_state(state.store.state, state.store.loading)


def _active_session() -> Session:
    session = state.store.session
    if session is None:
        raise HTTPException(status_code=404, detail="no active session")
    return session


def _require_node(node_id: str) -> Node:
    node = _active_session().nodes.get(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"node not found: {node_id}")
    return node


# --- lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup: hydrate from storage
    state.store.hydrate()
    yield
    # shutdown: write any pending changes
    state.store.close()


# --- app ---

app = FastAPI(
    title="rabbithole api",
    description="REST API for branching conversations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- endpoints ---

@app.get("/health")
async def health():
    """health check."""
    return {"status": "ok"}


@app.get("/state", response_model=StateResponse)
async def get_state():
    """get the full engine state."""
    return _state_response()


@app.get("/sessions", response_model=list[SessionListItem])
async def list_sessions():
    """list sessions, most recently updated first."""
    current = state.store.state
    items = [
        SessionListItem(
            id=s.id,
            title=s.title,
            node_count=len(s.nodes),
            updated_at=s.updated_at,
            is_active=s.id == current.active_session_id,
        )
        for s in current.sessions.values()
    ]
    items.sort(key=lambda i: i.updated_at, reverse=True)
    return items


@app.post("/sessions", response_model=StateResponse)
async def new_session():
    """create a session and make it active."""
    state.store.dispatch(create_session)
    return _state_response()


@app.delete("/sessions/{session_id}", response_model=StateResponse)
async def remove_session(session_id: str):
    """delete a session."""
    if session_id not in state.store.state.sessions:
        raise HTTPException(status_code=404, detail=f"session not found: {session_id}")
    state.store.dispatch(delete_session, session_id)
    return _state_response()


@app.post("/sessions/{session_id}/activate", response_model=StateResponse)
async def activate_session(session_id: str):
    """switch to another session."""
    if session_id not in state.store.state.sessions:
        raise HTTPException(status_code=404, detail=f"session not found: {session_id}")
    state.store.dispatch(set_active_session, session_id)
    return _state_response()


@app.put("/branch", response_model=StateResponse)
async def update_branch(req: BranchUpdate):
    """replace the active branch."""
    if not req.branch:
        raise HTTPException(status_code=400, detail="branch must not be empty")
    _active_session()
    state.store.dispatch(set_active_branch, req.branch)
    return _state_response()


@app.post("/current/{node_id}", response_model=StateResponse)
async def set_current(node_id: str):
    """move input focus to a node on the active branch."""
    _require_node(node_id)
    state.store.dispatch(set_current_node_id, node_id)
    return _state_response()


@app.post("/focus/{node_id}", response_model=StateResponse)
async def set_focus(node_id: str):
    """jump to a node, rebuilding the branch from its root path."""
    _require_node(node_id)
    state.store.dispatch(focus_node, node_id)
    return _state_response()


@app.post("/nodes/{node_id}/messages", response_model=NodeResponse)
async def add_message(node_id: str, req: MessageCreate):
    """append a message without asking the model."""
    _require_node(node_id)
    state.store.dispatch(append_message, node_id, Message.create(req.role, req.text))
    return NodeResponse.from_node(_require_node(node_id))


@app.post("/nodes/{node_id}/prompt", response_model=StateResponse)
async def run_prompt(node_id: str, req: PromptRun):
    """send a prompt on a node and wait for the reply."""
    _require_node(node_id)
    if not req.text.strip():
        raise HTTPException(status_code=400, detail="prompt must not be empty")
    await state.store.send_prompt(node_id, req.text, state.client)
    return _state_response()


@app.post("/branches", response_model=BranchCreated)
async def create_branch(req: BranchCreate):
    """branch from a selection made against rendered text."""
    _require_node(req.node_id)
    selection = state.store.canonical_selection(
        req.node_id, req.message_id, req.text, req.start_offset, req.end_offset
    )
    if selection is None:
        raise HTTPException(status_code=404, detail=f"message not found: {req.message_id}")

    if req.prompt and req.prompt.strip():
        child_id = await state.store.send_context_prompt(
            req.node_id, req.message_id, selection, req.prompt, state.client
        )
    else:
        child_id = state.store.dispatch(
            create_child_node, req.node_id, req.message_id, selection
        )
    if child_id is None:
        raise HTTPException(status_code=409, detail="selection overlaps an existing branch or is out of range")
    return BranchCreated(node_id=child_id, state=_state_response())


@app.put("/nodes/{node_id}/header", response_model=NodeResponse)
async def update_header(node_id: str, req: HeaderUpdate):
    """set a node header (the root header is the session title)."""
    _require_node(node_id)
    state.store.dispatch(set_node_header, node_id, req.header)
    return NodeResponse.from_node(_require_node(node_id))


@app.get("/history/{node_id}", response_model=list[HistoryLineModel])
async def get_history(node_id: str):
    """history the model would see for a prompt sent on this node."""
    _require_node(node_id)
    current = state.store.state
    return [
        HistoryLineModel(role=line.role, text=line.text)
        for line in build_history(current, branch_through(current, node_id))
    ]


@app.post("/api/chat", response_model=ChatResponse)
async def chat(req: ChatRequest):
    """stub completion route. replace with a real LLM call."""
    result = stub_completion(req.prompt)
    return ChatResponse(header=result.header, message=result.message)


# --- entrypoint ---

def run(args) -> None:
    """run the api server with parsed command-line arguments."""
    import logging

    import uvicorn

    global state

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    state = AppState(
        mock=args.mock,
        chat_url=args.chat_url,
        state_path=Path(args.state).expanduser() if args.state else None,
        debounce_seconds=args.debounce,
    )

    uvicorn.run(app, host=args.host, port=args.port)


def main(argv: Optional[list[str]] = None):
    """run the api server."""
    import argparse

    parser = argparse.ArgumentParser(description="rabbithole api server")
    add_server_arguments(parser)
    run(parser.parse_args(argv))


def add_server_arguments(parser) -> None:
    parser.add_argument("--host", default="127.0.0.1", help="host to bind")
    parser.add_argument("--port", "-p", type=int, default=8000, help="port to bind")
    parser.add_argument("--mock", "-m", action="store_true", help="use mock client")
    parser.add_argument("--chat-url", help="http chat endpoint to use instead of claude")
    parser.add_argument("--state", help="path to state file (default: $RABBITHOLE_HOME/state.json)")
    parser.add_argument(
        "--debounce",
        type=float,
        default=STORAGE_DEBOUNCE_SECONDS,
        help=f"seconds to wait before persisting changes (default: {STORAGE_DEBOUNCE_SECONDS})",
    )
    parser.add_argument("--log-level", default="INFO", help="logging level")


if __name__ == "__main__":
    main()
