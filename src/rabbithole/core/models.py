"""core data model for rabbithole.

a session is a tree of nodes; each node holds an ordered run of messages and
(except the root) a link back to the message span it branched from.

every entity is frozen. mutations live in engine.py and always build fresh
containers, so a snapshot handed out once never changes underneath a reader.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal, Optional


# --- configuration ---

STATE_VERSION = 1

Role = Literal["user", "assistant"]
ROLES = ("user", "assistant")


def _now() -> str:
    return datetime.now().isoformat()


def _str(d: dict, key: str) -> str:
    value = d[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _optional_str(d: dict, key: str, default: Optional[str] = None) -> Optional[str]:
    value = d.get(key, default)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{key} must be a string or null, got {type(value).__name__}")
    return value


def _list(d: dict, key: str) -> list:
    value = d.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list, got {type(value).__name__}")
    return value


def _str_list(d: dict, key: str) -> tuple[str, ...]:
    values = _list(d, key)
    if not all(isinstance(v, str) for v in values):
        raise TypeError(f"{key} must hold strings only")
    return tuple(values)


def _mapping(d: dict, key: str) -> dict:
    value = d[key]
    if not isinstance(value, dict):
        raise TypeError(f"{key} must be an object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Highlight:
    """a span of a message that anchors exactly one child node."""

    id: str
    child_node_id: str
    text: str           # anchor text snapshot, used for display
    start_offset: int   # canonical, into the owning message's raw text
    end_offset: int
    is_active: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "childNodeId": self.child_node_id,
            "text": self.text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Highlight:
        return cls(
            id=_str(d, "id"),
            child_node_id=_str(d, "childNodeId"),
            text=_optional_str(d, "text", "") or "",
            start_offset=int(d["startOffset"]),
            end_offset=int(d["endOffset"]),
            is_active=bool(d.get("isActive", False)),
        )


@dataclass(frozen=True)
class Message:
    """a single turn. text never changes once created."""

    id: str
    role: Role
    text: str
    created_at: str = field(default_factory=_now)
    highlights: tuple[Highlight, ...] = ()

    @classmethod
    def create(cls, role: Role, text: str) -> Message:
        """create a message with a fresh id."""
        if role not in ROLES:
            raise ValueError(f"invalid role: {role}")
        return cls(id=generate_id(), role=role, text=text)

    def with_highlight(self, highlight: Highlight) -> Message:
        """copy of this message with one more highlight attached."""
        return replace(self, highlights=self.highlights + (highlight,))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "createdAt": self.created_at,
            "highlights": [h.to_dict() for h in self.highlights],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Message:
        role = _str(d, "role")
        if role not in ROLES:
            raise ValueError(f"invalid role: {role}")
        return cls(
            id=_str(d, "id"),
            role=role,
            text=_str(d, "text"),
            created_at=str(d.get("createdAt", "")),
            highlights=tuple(Highlight.from_dict(h) for h in _list(d, "highlights")),
        )


@dataclass(frozen=True)
class Selection:
    """text + canonical offsets of a span in a parent message."""

    text: str
    start_offset: int
    end_offset: int

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Selection:
        return cls(
            text=_optional_str(d, "text", "") or "",
            start_offset=int(d["startOffset"]),
            end_offset=int(d["endOffset"]),
        )


@dataclass(frozen=True)
class ParentLink:
    """back-pointer from a child node to the span it grew out of."""

    parent_node_id: str
    parent_message_id: str
    selection: Selection

    def to_dict(self) -> dict:
        return {
            "parentNodeId": self.parent_node_id,
            "parentMessageId": self.parent_message_id,
            "selection": self.selection.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> ParentLink:
        return cls(
            parent_node_id=_str(d, "parentNodeId"),
            parent_message_id=_str(d, "parentMessageId"),
            selection=Selection.from_dict(_mapping(d, "selection")),
        )


@dataclass(frozen=True)
class Node:
    """single vertex in the conversation tree."""

    id: str
    depth: int = 0
    header: Optional[str] = None
    messages: tuple[Message, ...] = ()
    parent: Optional[ParentLink] = None
    children_ids: tuple[str, ...] = ()

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "depth": self.depth,
            "header": self.header,
            "parent": self.parent.to_dict() if self.parent else None,
            "messages": [m.to_dict() for m in self.messages],
            "children": list(self.children_ids),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Node:
        parent = d.get("parent")
        return cls(
            id=_str(d, "id"),
            depth=int(d.get("depth", 0)),
            header=_optional_str(d, "header"),
            messages=tuple(Message.from_dict(m) for m in _list(d, "messages")),
            parent=ParentLink.from_dict(parent) if parent else None,
            children_ids=_str_list(d, "children"),
        )


@dataclass(frozen=True)
class Session:
    """one full branching conversation."""

    id: str
    root_node_id: str
    nodes: dict[str, Node] = field(default_factory=dict)
    title: Optional[str] = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def root(self) -> Node:
        return self.nodes[self.root_node_id]

    def with_nodes(self, *nodes: Node) -> Session:
        """copy of this session with the given nodes added or replaced."""
        return replace(self, nodes={**self.nodes, **{n.id: n for n in nodes}})

    def touch(self) -> Session:
        return replace(self, updated_at=_now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "rootNodeId": self.root_node_id,
            "nodes": {nid: n.to_dict() for nid, n in self.nodes.items()},
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Session:
        created_at = str(d.get("createdAt", ""))
        return cls(
            id=_str(d, "id"),
            title=_optional_str(d, "title"),
            root_node_id=_str(d, "rootNodeId"),
            nodes={nid: Node.from_dict(nd) for nid, nd in _mapping(d, "nodes").items()},
            created_at=created_at,
            updated_at=str(d.get("updatedAt", created_at)),
        )


@dataclass(frozen=True)
class BranchingState:
    """the whole engine state: every session plus what is on screen."""

    version: int = STATE_VERSION
    sessions: dict[str, Session] = field(default_factory=dict)
    active_session_id: Optional[str] = None
    active_branch_node_ids: tuple[str, ...] = ()
    current_node_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "activeSessionId": self.active_session_id,
            "activeBranchNodeIds": list(self.active_branch_node_ids),
            "currentNodeId": self.current_node_id,
            "sessions": {sid: s.to_dict() for sid, s in self.sessions.items()},
        }

    @classmethod
    def from_dict(cls, d: dict) -> BranchingState:
        return cls(
            version=int(d["version"]),
            active_session_id=_optional_str(d, "activeSessionId"),
            active_branch_node_ids=_str_list(d, "activeBranchNodeIds"),
            current_node_id=_optional_str(d, "currentNodeId"),
            sessions={sid: Session.from_dict(sd) for sid, sd in _mapping(d, "sessions").items()},
        )


# --- factories ---

def generate_id() -> str:
    """generate a short unique id."""
    return uuid.uuid4().hex[:12]


def create_root_node() -> Node:
    return Node(id=generate_id())


def create_session_record() -> Session:
    """a new session holding a single empty root node."""
    root = create_root_node()
    now = _now()
    return Session(
        id=generate_id(),
        root_node_id=root.id,
        nodes={root.id: root},
        created_at=now,
        updated_at=now,
    )


# --- tree queries ---

def path_to_root(session: Session, node_id: str) -> tuple[str, ...]:
    """ids from the session root down to node_id.

    empty if the node is unknown, a parent pointer dangles, or the parent
    chain loops.
    """
    path: list[str] = []
    seen: set[str] = set()
    current: Optional[str] = node_id
    while current:
        node = session.nodes.get(current)
        if node is None or current in seen:
            return ()
        seen.add(current)
        path.append(current)
        current = node.parent.parent_node_id if node.parent else None
    return tuple(reversed(path))


def is_descendant_reachable(session: Session, ancestor_id: str, node_id: str) -> bool:
    """true if ancestor_id lies on node_id's path to the root."""
    return ancestor_id in path_to_root(session, node_id)


def children_of(session: Session, node_id: str) -> list[Node]:
    """child nodes in creation order."""
    node = session.nodes.get(node_id)
    if not node:
        return []
    return [session.nodes[cid] for cid in node.children_ids if cid in session.nodes]


def validate_session(session: Session) -> list[str]:
    """list every broken tree invariant. an empty list means the session is sound."""
    problems = []
    root = session.nodes.get(session.root_node_id)
    if root is None:
        return [f"root node {session.root_node_id} missing"]
    if root.parent is not None or root.depth != 0:
        problems.append("root node must have depth 0 and no parent")

    for key, node in session.nodes.items():
        if key != node.id:
            problems.append(f"node stored under {key} has id {node.id}")

    for node in session.nodes.values():
        if node.id == session.root_node_id:
            continue
        if node.parent is None:
            problems.append(f"node {node.id} has no parent link")
            continue
        parent = session.nodes.get(node.parent.parent_node_id)
        if parent is None:
            problems.append(f"node {node.id} points at missing parent")
            continue
        if not path_to_root(session, node.id):
            problems.append(f"node {node.id} is not connected to the root")
        if node.depth != parent.depth + 1:
            problems.append(f"node {node.id} depth {node.depth} != parent depth + 1")
        if node.id not in parent.children_ids:
            problems.append(f"node {node.id} missing from parent's children")

    for node in session.nodes.values():
        for child_id in node.children_ids:
            child = session.nodes.get(child_id)
            if child is None or not child.parent or child.parent.parent_node_id != node.id:
                problems.append(f"node {node.id} lists {child_id} as a child but it does not point back")
        for message in node.messages:
            spans = sorted(message.highlights, key=lambda h: h.start_offset)
            for h in spans:
                if not 0 <= h.start_offset < h.end_offset <= len(message.text):
                    problems.append(f"highlight {h.id} offsets out of bounds")
            for a, b in zip(spans, spans[1:]):
                if b.start_offset < a.end_offset:
                    problems.append(f"highlights {a.id} and {b.id} overlap")

    return problems
