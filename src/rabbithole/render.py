"""terminal rendering of the active branch.

only a projection of the state: one panel per node on the branch, with each
highlighted span shown by its anchor text and the active one emphasised.
"""

from __future__ import annotations

from typing import Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .core.engine import get_active_session
from .core.models import BranchingState, Message, Node
from .core.offsets import render_segments


def render_message(message: Message) -> Text:
    """message text with highlight spans styled."""
    text = Text()
    text.append("you: " if message.role == "user" else "model: ", style="bold dim")
    for segment, highlight in render_segments(message.text, message.highlights):
        if highlight is None:
            text.append(segment)
        elif highlight.is_active:
            text.append(segment, style="bold black on yellow")
        else:
            text.append(segment, style="underline yellow")
    return text


def render_node(node: Node, is_current: bool = False) -> Panel:
    """render a node as a panel."""
    title = node.header or ("root" if node.depth == 0 else "untitled")
    if node.parent:
        body = [Text(f'from "{node.parent.selection.text}"', style="dim italic")]
    else:
        body = []
    body.extend(render_message(m) for m in node.messages)
    if not node.messages:
        body.append(Text("(no messages yet)", style="dim"))
    return Panel(
        Group(*body),
        title=Text(f"{title} ({node.id})"),
        title_align="left",
        border_style="green" if is_current else "dim",
        padding=(0, 1),
    )


def render_branch(state: BranchingState, console: Optional[Console] = None) -> None:
    """print every node on the active branch, root first."""
    console = console or Console()
    session = get_active_session(state)
    if session is None:
        console.print("[dim]no active session[/dim]")
        return

    console.print(Text(session.title or "untitled session", style="bold"))
    for node_id in state.active_branch_node_ids:
        node = session.nodes.get(node_id)
        if node is None:
            continue
        console.print(render_node(node, is_current=node_id == state.current_node_id))
