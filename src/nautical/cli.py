#!/usr/bin/env python3
"""Nautical CLI for inspecting the internal table."""

import argparse
import logging
import sys
from datetime import datetime

import questionary
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from nautical.config import config
from nautical.db import close_store, get_store
from nautical.errors import RepositoryException
from nautical.internal import Field, InternalRepository
from nautical.internal.model import TEXT_FIELDS
from nautical.stream import Stream

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def render(entities, title: str) -> int:
    """Print entities as a table and return how many were shown."""
    table = Table(title=title)
    for column in ("id", "uuid", "added", "updated", "flag", "type", "origin", "bytes"):
        table.add_column(column)

    count = 0
    for entity in entities:
        table.add_row(
            str(entity.id),
            entity.uuid.hex(),
            entity.added.isoformat(timespec="seconds"),
            entity.updated.isoformat(timespec="seconds"),
            str(entity.flag),
            entity.type,
            entity.origin,
            str(len(entity.data)),
        )
        count += 1

    console.print(table)
    console.print(f"[dim]{count} row(s)[/]")
    return count


def drain(stream: Stream, title: str) -> int:
    """Render a stream, then report how it ended. Returns an exit code."""
    with stream:
        render(stream, title)
    if stream.error is not None:
        console.print(f"[red]{stream.error}[/]")
        return 1
    return 0


def select_field(choices) -> Field | None:
    """Prompt the user to pick a column."""
    return questionary.select(
        "Select a field:",
        choices=[questionary.Choice(title=f.value, value=f) for f in choices],
    ).ask()


def parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def get_command(repo: InternalRepository, args) -> int:
    entity = repo.get(args.id)
    render([entity], f"internal {args.id}")
    return 0


def all_command(repo: InternalRepository, args) -> int:
    return drain(repo.all(), "internal")


def lookup_command(repo: InternalRepository, args) -> int:
    return drain(repo.lookup(*args.ids), "lookup")


def find_command(repo: InternalRepository, args) -> int:
    choices = TEXT_FIELDS if args.contains else list(Field)
    field = Field(args.field) if args.field else select_field(sorted(choices))
    if field is None:
        console.print("[dim]Cancelled.[/]")
        return 0

    if args.contains:
        stream = repo.contains(field, args.value)
    else:
        stream = repo.equals(field, args.value)
    return drain(stream, f"{field.value} {'~' if args.contains else '='} {args.value!r}")


def range_command(repo: InternalRepository, args) -> int:
    if args.after and args.before:
        stream = repo.between(args.field, parse_time(args.after), parse_time(args.before))
    elif args.after:
        stream = repo.after(args.field, parse_time(args.after))
    elif args.before:
        stream = repo.before(args.field, parse_time(args.before))
    else:
        console.print("[red]Give --after, --before, or both.[/]")
        return 2
    return drain(stream, f"{args.field} range")


def load_command(repo: InternalRepository, args) -> int:
    stream = repo.all()
    count = repo.load(stream)
    if stream.error is not None:
        console.print(f"[red]{stream.error}[/]")
        return 1
    console.print(f"[green]Indexed {count} entities ({len(repo.crates)} unique ids).[/]")
    return 0


COMMANDS = {
    "get": get_command,
    "all": all_command,
    "lookup": lookup_command,
    "find": find_command,
    "range": range_command,
    "load": load_command,
}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Nautical CLI")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Show one entity by id")
    get_parser.add_argument("id", type=int)

    subparsers.add_parser("all", help="Show every entity")

    lookup_parser = subparsers.add_parser("lookup", help="Show entities by id, in order")
    lookup_parser.add_argument("ids", type=int, nargs="+")

    find_parser = subparsers.add_parser("find", help="Filter on a column value")
    find_parser.add_argument("--field", choices=[f.value for f in Field])
    mode = find_parser.add_mutually_exclusive_group()
    mode.add_argument("--equals", action="store_false", dest="contains", help="Exact match (default)")
    mode.add_argument("--contains", action="store_true", dest="contains", help="Substring match")
    find_parser.add_argument("value")
    find_parser.set_defaults(contains=False)

    range_parser = subparsers.add_parser("range", help="Filter on a timestamp column")
    range_parser.add_argument("field", choices=["added", "updated"])
    range_parser.add_argument("--after", help="ISO timestamp, exclusive")
    range_parser.add_argument("--before", help="ISO timestamp, exclusive")

    subparsers.add_parser("load", help="Index every entity in memory and report the count")

    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper())

    repo = InternalRepository(get_store())
    try:
        return COMMANDS[args.command](repo, args)
    except RepositoryException as e:
        console.print(f"[red]{e}[/]")
        return 1
    finally:
        close_store()


if __name__ == "__main__":
    sys.exit(main())
