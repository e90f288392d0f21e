"""cli entrypoint for rabbithole."""

import argparse
import logging
from pathlib import Path

from .api import server
from .core.engine import focus_node
from .core.persistence import FileGateway, load_state
from .render import render_branch


def show(args: argparse.Namespace) -> None:
    """print the active branch of the persisted state."""
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))
    gateway = FileGateway(Path(args.state).expanduser() if args.state else None)
    state = load_state(gateway)
    if args.node:
        state = focus_node(state, args.node)
    render_branch(state)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="rabbithole - branching conversations with a language model"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="run the api server")
    server.add_server_arguments(serve_parser)

    show_parser = subparsers.add_parser("show", help="print the active branch")
    show_parser.add_argument("--state", help="path to state file")
    show_parser.add_argument("--node", help="show the branch ending at this node instead")
    show_parser.add_argument("--log-level", default="WARNING", help="logging level")

    args = parser.parse_args(argv)
    if args.command == "serve":
        server.run(args)
    else:
        show(args)


if __name__ == "__main__":
    main()
