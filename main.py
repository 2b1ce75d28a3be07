#!/usr/bin/env python3
"""
Rune - Backlog and Knowledge Graph Engine

Command-line entry point. Each subcommand opens the configured database,
performs one operation and prints the result.
"""

import logging
import sys
import argparse
import json
from pathlib import Path
from typing import List

from rune.agents import AgentRunner, agent_registry
from rune.backlog import BacklogManager, calculate_priority
from rune.config import config
from rune.database import DatabaseManager
from rune.errors import RuneError
from rune.graph import KnowledgeGraph
from rune.models import BacklogItem, BacklogItemType, BacklogStatus, BookType, EntityType, Room
from rune.pipeline import SessionProcessor


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file)
        ]
    )


def read_text(path: str) -> str:
    """Read a text file, or stdin when the path is '-'."""
    if path == "-":
        return sys.stdin.read()
    with open(Path(path), 'r', encoding='utf-8') as f:
        return f.read()


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def format_backlog(items: List[BacklogItem], session_count: int, has_drafts: bool) -> List[dict]:
    """Attach the effective score to each item for display."""
    return [
        {**item.model_dump(mode="json"), "score": calculate_priority(item, session_count, has_drafts)}
        for item in items
    ]


def run_command(args: argparse.Namespace, db: DatabaseManager) -> None:
    """Dispatch a parsed subcommand against an open database."""
    graph = KnowledgeGraph(db)
    backlog = BacklogManager(db)

    if args.command == "init":
        print(f"Database ready: {db.db_path}")

    elif args.command == "add-book":
        book = db.create_book(args.title, BookType(args.book_type))
        print_json(book.model_dump(mode="json"))

    elif args.command == "books":
        print_json([book.model_dump(mode="json") for book in db.list_books()])

    elif args.command == "add-session":
        transcript = read_text(args.transcript) if args.transcript else ""
        session = db.add_session(args.book, transcript)
        print_json(session.model_dump(mode="json", exclude={"raw_transcript"}))

    elif args.command == "extract":
        with AgentRunner(database_manager=db) as agent_runner:
            processor = SessionProcessor(db, agent_runner)
            result = processor.extract(args.book, args.session, read_text(args.file))
        print_json({
            "entities": [
                {"name": merged.entity.name, "type": merged.entity.entity_type.value, "is_new": merged.is_new}
                for merged in result.entities
            ],
            "relationships": len(result.relationships),
            "skipped_relationships": len(result.skipped_relationships)
        })

    elif args.command == "synthesize":
        with AgentRunner(database_manager=db) as agent_runner:
            processor = SessionProcessor(db, agent_runner)
            outcome = processor.synthesize(args.book, args.session, seed_unresolved=not args.no_seed)
        print_json(outcome.model_dump(mode="json"))

    elif args.command == "seed":
        processor = SessionProcessor(db, agent_runner=None)
        items = processor.seed_unresolved(args.book, args.session)
        print_json([item.model_dump(mode="json") for item in items])

    elif args.command == "files":
        room = Room(args.room) if args.room else None
        print_json([f.model_dump(mode="json") for f in db.list_workspace_files(args.book, room)])

    elif args.command == "unresolved":
        print_json([entity.model_dump(mode="json") for entity in graph.find_unresolved(args.book)])

    elif args.command == "network":
        entity_type = EntityType(args.type) if args.type else None
        if entity_type:
            print_json({"entities": [e.model_dump(mode="json") for e in graph.get_entities(args.book, entity_type)]})
        else:
            print_json(graph.get_entity_network(args.book).model_dump(mode="json"))

    elif args.command == "backlog":
        items = backlog.get_backlog_items(
            args.book,
            status=BacklogStatus(args.status) if args.status else None,
            item_type=BacklogItemType(args.type) if args.type else None
        )
        print_json(format_backlog(items, db.count_sessions(args.book), db.has_draft_files(args.book)))

    elif args.command == "next":
        item = backlog.get_next_item(args.book)
        if item is None:
            print("No open backlog items.")
        else:
            print_json(format_backlog([item], db.count_sessions(args.book), db.has_draft_files(args.book))[0])

    elif args.command == "address":
        print_json(backlog.address_item(args.item).model_dump(mode="json"))

    elif args.command == "dismiss":
        print_json(backlog.dismiss_item(args.item).model_dump(mode="json"))

    elif args.command == "agents":
        print_json([
            {"name": name, "description": agent_registry.get_agent(name).description}
            for name in agent_registry.list_agents()
        ])

    elif args.command == "calls":
        print_json(db.get_ai_agent_calls(agent_name=args.agent, book_id=args.book, limit=args.limit))


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Rune - Backlog and Knowledge Graph Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py add-book "My Grandmother's War" --type memoir
  python main.py add-session --book BOOK_ID --transcript session1.txt
  python main.py extract --book BOOK_ID --session SESSION_ID --file chunk.txt
  python main.py synthesize --book BOOK_ID --session SESSION_ID
  python main.py next --book BOOK_ID
        """
    )

    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help=f"Database file (default: {config.database_filename})"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Rune 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    add_book = subparsers.add_parser("add-book", help="Create a book")
    add_book.add_argument("title")
    add_book.add_argument("--type", dest="book_type", choices=[t.value for t in BookType], default="memoir")

    subparsers.add_parser("books", help="List books")

    add_session = subparsers.add_parser("add-session", help="Record a session for a book")
    add_session.add_argument("--book", required=True)
    add_session.add_argument("--transcript", help="Transcript file, or - for stdin")

    extract = subparsers.add_parser("extract", help="Extract entities from text into the knowledge graph")
    extract.add_argument("--book", required=True)
    extract.add_argument("--session")
    extract.add_argument("--file", required=True, help="Text file, or - for stdin")

    synthesize = subparsers.add_parser("synthesize", help="Synthesize a session into backlog items")
    synthesize.add_argument("--book", required=True)
    synthesize.add_argument("--session", required=True)
    synthesize.add_argument("--no-seed", action="store_true", help="Skip seeding from unresolved entities")

    seed = subparsers.add_parser("seed", help="Create backlog items for unresolved entities")
    seed.add_argument("--book", required=True)
    seed.add_argument("--session")

    files = subparsers.add_parser("files", help="List a book's workspace files")
    files.add_argument("--book", required=True)
    files.add_argument("--room", choices=[r.value for r in Room])

    unresolved = subparsers.add_parser("unresolved", help="List unresolved entities")
    unresolved.add_argument("--book", required=True)

    network = subparsers.add_parser("network", help="Print the entity network")
    network.add_argument("--book", required=True)
    network.add_argument("--type", choices=[t.value for t in EntityType])

    backlog = subparsers.add_parser("backlog", help="List backlog items with their effective scores")
    backlog.add_argument("--book", required=True)
    backlog.add_argument("--status", choices=[s.value for s in BacklogStatus])
    backlog.add_argument("--type", choices=[t.value for t in BacklogItemType])

    next_item = subparsers.add_parser("next", help="Show the next item to talk about")
    next_item.add_argument("--book", required=True)

    address = subparsers.add_parser("address", help="Mark a backlog item as addressed")
    address.add_argument("item")

    dismiss = subparsers.add_parser("dismiss", help="Dismiss a backlog item")
    dismiss.add_argument("item")

    subparsers.add_parser("agents", help="List the configured AI agents")

    calls = subparsers.add_parser("calls", help="List logged AI agent calls")
    calls.add_argument("--agent")
    calls.add_argument("--book")
    calls.add_argument("--limit", type=int, default=10)

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging()

    try:
        with DatabaseManager(args.db or config.database_filename) as db:
            db.initialize_database()
            run_command(args, db)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")

    except (RuneError, ValueError) as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
