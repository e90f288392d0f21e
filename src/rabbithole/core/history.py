"""linearise a root-to-node branch into the prompt history a model sees."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .models import BranchingState, Role


# --- configuration ---

BRANCH_NOTE_LIMIT = 140


@dataclass(frozen=True)
class HistoryLine:
    role: Role
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text}


def branch_note(selection_text: str) -> str:
    """synthetic user line marking the text a branch sprang from."""
    return f'[Branch created from previous text: "{selection_text[:BRANCH_NOTE_LIMIT]}"]'


def build_history(
    state: BranchingState,
    branch_node_ids: Sequence[str],
    session_id: Optional[str] = None,
) -> list[HistoryLine]:
    """flatten a branch into role/text lines.

    every node after the first that has a parent link is preceded by a
    branch note naming the selected text. unknown node ids are skipped.
    """
    session = state.sessions.get(session_id or state.active_session_id or "")
    if session is None:
        return []

    lines: list[HistoryLine] = []
    for index, node_id in enumerate(branch_node_ids):
        node = session.nodes.get(node_id)
        if node is None:
            continue
        if index > 0 and node.parent:
            lines.append(HistoryLine(role="user", text=branch_note(node.parent.selection.text)))
        lines.extend(HistoryLine(role=m.role, text=m.text) for m in node.messages)
    return lines
