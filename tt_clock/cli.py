"""CLI entry point for tt-clock."""

from __future__ import annotations

import asyncio
import io
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click

from tt_clock import keys
from tt_clock.config import DATA_DIR_ENV, configure_logging, db_path, resolve_data_dir
from tt_clock.dates import DateParser, elapsed
from tt_clock.errors import ClockError, ParseError
from tt_clock.kv import OrderedStore
from tt_clock.query import RangeQuery
from tt_clock.report import DEFAULT_TITLE, DayAggregator, build_report, format_elapsed, write_csv
from tt_clock.store import EntryStore

T = TypeVar("T")


def _run(ctx: click.Context, action: Callable[[EntryStore], Awaitable[T]]) -> T:
    """Open the store, run one async action against it, report errors and exit 1."""
    path = db_path(ctx.obj["data_dir"])

    async def runner() -> T:
        with OrderedStore.open(path) as db:
            return await action(EntryStore(db))

    try:
        return asyncio.run(runner())
    except ClockError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _parse_date(expr: str | None) -> datetime | None:
    if not expr:
        return None
    try:
        return DateParser().parse(expr)
    except ParseError as e:
        raise click.BadParameter(str(e)) from e


def range_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Shared --gt/--lt/--type/--archive options for scanning commands."""
    func = click.option("--archive", "include_archived", is_flag=True, help="Include archived entries")(func)
    func = click.option("--type", "-t", "type_expr", help="Filter by type; /regex/ for a pattern")(func)
    func = click.option("--lt", help="Only entries before this key suffix (e.g. 2025-02)")(func)
    func = click.option("--gt", help="Only entries after this key suffix (e.g. 2025-01)")(func)
    return func


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--directory",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=DATA_DIR_ENV,
    default=None,
    help="Data directory (default: ~/.local/share/tt-clock)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, directory: Path | None, verbose: bool) -> None:
    """Time Tracker clock CLI."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = resolve_data_dir(directory)


@main.command("start")
@click.option("--date", "date_expr", help="Start time (default: now)")
@click.option("--message", "-m", help="Note for the entry")
@click.option("--type", "-t", "entry_type", help="Entry type")
@click.pass_context
def start_command(ctx: click.Context, date_expr: str | None, message: str | None, entry_type: str | None) -> None:
    """Start a new entry."""
    date = _parse_date(date_expr)
    _run(ctx, lambda store: store.start_entry(date, message, entry_type))


@main.command("stop")
@click.argument("stamp", required=False)
@click.option("--key", "-k", "key_option", help="Stamp of the entry to stop")
@click.option("--date", "date_expr", help="End time (default: now)")
@click.option("--message", "-m", help="Appended to the entry's message")
@click.pass_context
def stop_command(
    ctx: click.Context,
    stamp: str | None,
    key_option: str | None,
    date_expr: str | None,
    message: str | None,
) -> None:
    """Stop the latest running entry, or the entry STAMP."""
    date = _parse_date(date_expr)
    _run(ctx, lambda store: store.stop_entry(key_option or stamp, date, message))


@main.command("restart")
@click.argument("stamp", required=False)
@click.option("--key", "-k", "key_option", help="Stamp of the entry to restart")
@click.pass_context
def restart_command(ctx: click.Context, stamp: str | None, key_option: str | None) -> None:
    """Start a new entry with the message and type of the latest entry or STAMP."""
    _run(ctx, lambda store: store.restart_entry(key_option or stamp))


@main.command("add")
@click.argument("start")
@click.argument("end")
@click.option("--message", "-m", help="Note for the entry")
@click.option("--type", "-t", "entry_type", help="Entry type")
@click.pass_context
def add_command(ctx: click.Context, start: str, end: str, message: str | None, entry_type: str | None) -> None:
    """Add a finished entry from START to END."""
    start_dt = _parse_date(start)
    end_dt = _parse_date(end)
    _run(ctx, lambda store: store.add_entry(start_dt, end_dt, message, entry_type))


@main.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Show elapsed time of the running entry."""
    running = _run(ctx, lambda store: store.status())
    if running is None:
        click.echo("stopped")
    else:
        click.echo(f"elapsed time: {format_elapsed(running)}")


@main.command("data")
@click.argument("type_arg", required=False, metavar="TYPE")
@range_options
@click.option("--rate", "-r", type=float, help="Hourly rate included in the report")
@click.option("--title", default=DEFAULT_TITLE, show_default=True, help="Report title")
@click.pass_context
def data_command(
    ctx: click.Context,
    type_arg: str | None,
    gt: str | None,
    lt: str | None,
    type_expr: str | None,
    include_archived: bool,
    rate: float | None,
    title: str,
) -> None:
    """Print hours per day as JSON."""

    async def action(store: EntryStore):
        query = RangeQuery(
            store.db,
            gt=gt,
            lt=lt,
            type_filter=type_expr or type_arg,
            include_archived=include_archived,
        )
        aggregator = DayAggregator(now=store.clock())
        async for entry in query:
            aggregator.add(entry)
        return build_report(aggregator.buckets, title=title, rate=rate)

    report = _run(ctx, action)
    click.echo(report.to_json())


@main.command("csv")
@range_options
@click.pass_context
def csv_command(
    ctx: click.Context,
    gt: str | None,
    lt: str | None,
    type_expr: str | None,
    include_archived: bool,
) -> None:
    """Export entries as CSV."""

    async def action(store: EntryStore):
        query = RangeQuery(store.db, gt=gt, lt=lt, type_filter=type_expr, include_archived=include_archived)
        return await query.collect(), store.clock()

    entries, now = _run(ctx, action)
    buffer = io.StringIO()
    write_csv(entries, buffer, now=now)
    click.echo(buffer.getvalue(), nl=False)


@main.command("list")
@range_options
@click.option("--raw", is_flag=True, help="Print stored records as JSON lines")
@click.option("--verbose", "-v", "show_messages", is_flag=True, help="Show messages")
@click.pass_context
def list_command(
    ctx: click.Context,
    gt: str | None,
    lt: str | None,
    type_expr: str | None,
    include_archived: bool,
    raw: bool,
    show_messages: bool,
) -> None:
    """List entries."""

    async def action(store: EntryStore):
        query = RangeQuery(store.db, gt=gt, lt=lt, type_filter=type_expr, include_archived=include_archived)
        return await query.collect(), store.clock()

    entries, now = _run(ctx, action)
    for entry in entries:
        if raw:
            click.echo(json.dumps({"key": entry.key, "value": entry.to_value()}, sort_keys=True))
            continue
        end = entry.end.strftime(keys.TIME_FORMAT) if entry.end else "NOW"
        line = (
            f"{keys.to_stamp(entry.key)}  {entry.start.strftime(keys.DATE_FORMAT)}  "
            f"[ {entry.start.strftime(keys.TIME_FORMAT)} - {end} ]  "
            f"({format_elapsed(elapsed(entry.start, entry.end or now))})"
        )
        if entry.type:
            line += f"  [{entry.type}]"
        if entry.archive:
            line += " A"
        click.echo(line)
        if show_messages and entry.message:
            click.echo()
            for message_line in entry.message.split("\n"):
                click.echo(f"    {message_line}")
            click.echo()


main.add_command(list_command, "ls")


@main.command("get")
@click.argument("stamp")
@click.pass_context
def get_command(ctx: click.Context, stamp: str) -> None:
    """Print the stored record of STAMP."""
    entry = _run(ctx, lambda store: store.get_entry(stamp))
    click.echo(json.dumps(entry.to_value(), sort_keys=True, indent=2))


@main.command("rm")
@click.argument("stamps", nargs=-1, required=True)
@click.pass_context
def rm_command(ctx: click.Context, stamps: tuple[str, ...]) -> None:
    """Remove entries."""
    _run(ctx, lambda store: store.remove_entries(stamps))


@main.command("set")
@click.argument("args", nargs=-1, required=True)
@click.pass_context
def set_command(ctx: click.Context, args: tuple[str, ...]) -> None:
    """Set a property: set [STAMP] NAME VALUE.

    Without STAMP the latest entry is updated. An empty VALUE removes the
    property.
    """
    if len(args) < 2:
        raise click.UsageError("tt-clock set [STAMP] NAME VALUE")

    async def action(store: EntryStore):
        if len(args) == 2:
            latest = await store.latest_entry()
            if latest is None:
                raise ClockError("no entries")
            stamp, name, value = latest.key, args[0], args[1]
        else:
            stamp, name, value = args[0], args[1], " ".join(args[2:])
        return await store.set_property(stamp, name, value)

    _run(ctx, action)


@main.command("edit")
@click.argument("stamp")
@click.argument("name", required=False)
@click.pass_context
def edit_command(ctx: click.Context, stamp: str, name: str | None) -> None:
    """Edit the record of STAMP (or one property of it) in $EDITOR."""
    entry = _run(ctx, lambda store: store.get_entry(stamp))
    record = entry.to_value()
    source = json.dumps(record.get(name) if name else record, sort_keys=True, indent=2)
    edited = click.edit(source, extension=".json")
    if edited is None:
        click.echo("No changes made", err=True)
        return

    async def action(store: EntryStore):
        if not name:
            return await store.replace_entry(entry.key, edited)
        try:
            value = json.loads(edited)
        except json.JSONDecodeError:
            # Bare text such as a date expression
            value = edited.strip()
        return await store.set_property(entry.key, name, "" if value is None else value, record.get(name))

    _run(ctx, action)


@main.command("insert")
@click.argument("stamp")
@click.pass_context
def insert_command(ctx: click.Context, stamp: str) -> None:
    """Create an empty entry at STAMP."""
    _run(ctx, lambda store: store.insert_entry(stamp))


def _archive(ctx: click.Context, stamps: tuple[str, ...], archived: bool, gt, lt, type_expr) -> None:
    async def action(store: EntryStore):
        if stamps:
            return await store.set_archived(stamps, archived)
        query = RangeQuery(store.db, gt=gt, lt=lt, type_filter=type_expr)
        return await store.archive_range(query, archived)

    changed = _run(ctx, action)
    click.echo(f"{'Archived' if archived else 'Unarchived'} {len(changed)} entries")


@main.command("archive")
@click.argument("stamps", nargs=-1)
@click.option("--gt", help="Only entries after this key suffix")
@click.option("--lt", help="Only entries before this key suffix")
@click.option("--type", "-t", "type_expr", help="Only entries of this type")
@click.pass_context
def archive_command(ctx: click.Context, stamps: tuple[str, ...], gt, lt, type_expr) -> None:
    """Archive entries by STAMP, or every entry in a range."""
    _archive(ctx, stamps, True, gt, lt, type_expr)


@main.command("unarchive")
@click.argument("stamps", nargs=-1)
@click.option("--gt", help="Only entries after this key suffix")
@click.option("--lt", help="Only entries before this key suffix")
@click.option("--type", "-t", "type_expr", help="Only entries of this type")
@click.pass_context
def unarchive_command(ctx: click.Context, stamps: tuple[str, ...], gt, lt, type_expr) -> None:
    """Unarchive entries by STAMP, or every entry in a range."""
    _archive(ctx, stamps, False, gt, lt, type_expr)


if __name__ == "__main__":
    main()
