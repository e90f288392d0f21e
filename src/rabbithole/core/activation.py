"""highlight activation: which highlighted span is the one being explored.

is_active is never stored as independent truth; it is a pure function of
the active branch, recomputed after every mutation that can move it.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from .models import Highlight, Session


def highlight_is_active(highlight: Highlight, branch: Sequence[str], owner_node_id: str) -> bool:
    """true iff the branch continues from the owner node straight into this highlight's child."""
    try:
        index = list(branch).index(owner_node_id)
    except ValueError:
        return False
    if index + 1 >= len(branch):
        return False
    return branch[index + 1] == highlight.child_node_id


def resolve_activation(session: Session, branch: Sequence[str]) -> Session:
    """recompute is_active on every highlight in the session.

    returns the same session object when nothing changed; otherwise only the
    affected messages and nodes are replaced.
    """
    changed_nodes = []
    for node in session.nodes.values():
        node_changed = False
        messages = []
        for message in node.messages:
            if not message.highlights:
                messages.append(message)
                continue
            message_changed = False
            highlights = []
            for highlight in message.highlights:
                is_active = highlight_is_active(highlight, branch, node.id)
                if highlight.is_active == is_active:
                    highlights.append(highlight)
                    continue
                message_changed = True
                highlights.append(replace(highlight, is_active=is_active))
            if message_changed:
                node_changed = True
                messages.append(replace(message, highlights=tuple(highlights)))
            else:
                messages.append(message)
        if node_changed:
            changed_nodes.append(replace(node, messages=tuple(messages)))

    if not changed_nodes:
        return session
    return session.with_nodes(*changed_nodes)
