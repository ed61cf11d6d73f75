"""
CLI interface for the miss log.

Usage:
    misslog add Renal "Type IV RTA" "Hyperkalemia + NAGMA = hypoaldosteronism" -t renal
    misslog list --tag renal
    misslog weak
"""

import json
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from . import __version__
from .api import MissLog, parse_snapshot
from .config import get_store_path, load_or_create_config
from .errors import SnapshotImportError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import WHY_OPTIONS, MissEntry, MutationResult, local_date


def _output_width() -> int:
    """Terminal width for line truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((120, 24)).columns


# Quiet by default; MISSLOG_VERBOSE=1 enables debug output
if os.environ.get("MISSLOG_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        print(f"misslog {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_ids_output = False
_full_output = False
_store_override: Optional[Path] = None
_active_store: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _ids_callback(value: bool):
    global _ids_output
    _ids_output = value


def _get_ids_output() -> bool:
    return _ids_output


def _full_callback(value: bool):
    global _full_output
    _full_output = value


def _get_full_output() -> bool:
    return _full_output


def _store_callback(value: Optional[Path]):
    global _store_override, _active_store
    _store_override = value
    _active_store = None


def _resolve_store(store: Optional[Path]) -> Optional[Path]:
    """Per-command --store wins over the global one. Remembered for error logs."""
    global _active_store
    _active_store = store if store is not None else _store_override
    return _active_store


app = typer.Typer(
    name="misslog",
    help="Log missed exam questions and review your weak spots.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


# -----------------------------------------------------------------------------
# Output Formatting
#
# Three output formats, controlled by global flags:
#   --ids:  entry ID only
#   --full: YAML frontmatter with all fields, rule as body
#   default: summary line (id date topic / concept [why] tags)
#
# JSON output (--json) works with any of the above.
# -----------------------------------------------------------------------------

def _format_summary_line(entry: MissEntry) -> str:
    """Format entry as a single line, truncated to the terminal width."""
    line = (
        f"{entry.id} {local_date(entry.created_at)} "
        f"{entry.topic} / {entry.concept} [{entry.why_missed}]"
    )
    if entry.tags:
        line += " " + " ".join(f"#{t}" for t in entry.tags)
    cols = _output_width()
    if len(line) > cols:
        line = line[:max(cols - 3, 20)] + "..."
    return line


def render_entry(entry: MissEntry) -> str:
    """Render one entry as YAML frontmatter with the rule as body."""
    lines = [
        "---",
        f"id: {entry.id}",
        f"date: {local_date(entry.created_at)}",
        f"topic: {entry.topic}",
        f"concept: {entry.concept}",
        f"why_missed: {entry.why_missed}",
    ]
    if entry.why_notes:
        lines.append(f"why_notes: {entry.why_notes}")
    if entry.tags:
        lines.append(f"tags: [{', '.join(entry.tags)}]")
    lines.append("---")
    lines.append(entry.rule)
    return "\n".join(lines)


def _format_entries(entries: list[MissEntry], as_json: bool = False) -> str:
    """Format multiple entries for display."""
    if _get_ids_output():
        ids = [entry.id for entry in entries]
        return json.dumps(ids) if as_json else "\n".join(ids)

    if as_json:
        return json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False)

    if not entries:
        return "No misses found."

    if _get_full_output():
        return "\n\n".join(render_entry(entry) for entry in entries)
    return "\n".join(_format_summary_line(entry) for entry in entries)


def _format_ranking(ranking: list[tuple[str, int]], as_json: bool = False) -> str:
    if as_json:
        return json.dumps([{"tag": tag, "count": count} for tag, count in ranking], indent=2)
    if not ranking:
        return "No tags yet. Add misses to see weak spots."
    width = max(len(tag) for tag, _ in ranking)
    return "\n".join(
        f"{i:>2}. {tag.ljust(width)}  {count}"
        for i, (tag, count) in enumerate(ranking, start=1)
    )


def _format_stats(stats: dict, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(stats, indent=2)
    lines = [
        f"misses: {stats['total']}",
        f"topics: {stats['topics']}",
        f"tags:   {stats['tags']}",
        "by reason:",
    ]
    width = max(len(why) for why in stats["by_reason"])
    for why, count in stats["by_reason"].items():
        lines.append(f"  {why.ljust(width)}  {count}")
    return "\n".join(lines)


def _report_failure(result: MutationResult) -> None:
    for message in result.errors:
        typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    ids_only: Annotated[bool, typer.Option(
        "--ids", "-I",
        help="Output only IDs (for piping to xargs)",
        callback=_ids_callback,
        is_eager=True,
    )] = False,
    full_output: Annotated[bool, typer.Option(
        "--full", "-F",
        help="Output every field of each miss",
        callback=_full_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="MISSLOG_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Log missed exam questions and review your weak spots."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="MISSLOG_STORE_PATH",
        help="Path to the store directory (default: ~/.misslog/)"
    )
]

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag (repeatable; commas also separate tags)"
    )
]

WHY_HELP = "Why it was missed: " + ", ".join(WHY_OPTIONS)


def _get_misslog(store: Optional[Path]) -> MissLog:
    """Open the miss log, handling errors gracefully."""
    actual_store = _resolve_store(store)
    try:
        config = load_or_create_config(get_store_path(actual_store))
        return MissLog(config=config)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    topic: Annotated[str, typer.Argument(help="Topic, e.g. Renal")],
    concept: Annotated[str, typer.Argument(help="Concept tested, e.g. 'Type IV RTA'")],
    rule: Annotated[str, typer.Argument(help="Rule / takeaway to remember")],
    why: Annotated[str, typer.Option("--why", "-w", help=WHY_HELP)] = "knowledge gap",
    notes: Annotated[str, typer.Option("--notes", "-N", help="What specifically happened")] = "",
    tag: TagOption = None,
    date: Annotated[Optional[str], typer.Option(
        "--date", "-d", help="Day of the miss, YYYY-MM-DD (default: today)"
    )] = None,
    store: StoreOption = None,
):
    """
    Log a missed question.

    \b
    Examples:
        misslog add Renal "Type IV RTA" "Hyperkalemia + NAGMA = hypoaldosteronism" -t renal,acid-base
        misslog add Cardio "Fixed split S2" "ASD" -w misread -d 2026-01-15
    """
    with _get_misslog(store) as ml:
        result = ml.add(
            topic, concept, rule,
            why_missed=why, why_notes=notes, tags=tag or [], date=date,
        )
        if not result.ok:
            _report_failure(result)
        typer.echo(_format_entries([result.entry], as_json=_get_json_output()))


@app.command()
def edit(
    id: Annotated[str, typer.Argument(help="ID of the miss to edit")],
    topic: Annotated[Optional[str], typer.Option("--topic", "-T", help="New topic")] = None,
    concept: Annotated[Optional[str], typer.Option("--concept", "-c", help="New concept")] = None,
    rule: Annotated[Optional[str], typer.Option("--rule", "-r", help="New rule")] = None,
    why: Annotated[Optional[str], typer.Option("--why", "-w", help=WHY_HELP)] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", "-N", help="New why-notes")] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t", help="Replace tags (repeatable)"
    )] = None,
    clear_tags: Annotated[bool, typer.Option("--clear-tags", help="Remove all tags")] = False,
    date: Annotated[Optional[str], typer.Option(
        "--date", "-d", help="New day of the miss, YYYY-MM-DD"
    )] = None,
    store: StoreOption = None,
):
    """Edit a logged miss. Only the given fields change."""
    tags = [] if clear_tags else tag
    with _get_misslog(store) as ml:
        result = ml.update(
            id, topic=topic, concept=concept, rule=rule,
            why_missed=why, why_notes=notes, tags=tags, date=date,
        )
        if not result.ok:
            _report_failure(result)
        typer.echo(_format_entries([result.entry], as_json=_get_json_output()))


@app.command()
def get(
    id: Annotated[list[str], typer.Argument(help="ID(s) of misses to show")],
    store: StoreOption = None,
):
    """Show misses in full."""
    had_errors = False
    with _get_misslog(store) as ml:
        entries = []
        for one_id in id:
            entry = ml.get(one_id)
            if entry is None:
                typer.echo(f"Not found: {one_id}", err=True)
                had_errors = True
            else:
                entries.append(entry)

    if entries:
        if _get_json_output() or _get_ids_output():
            typer.echo(_format_entries(entries, as_json=_get_json_output()))
        else:
            typer.echo("\n\n".join(render_entry(entry) for entry in entries))
    if had_errors:
        raise typer.Exit(1)


@app.command("del")
def del_cmd(
    id: Annotated[list[str], typer.Argument(help="ID(s) of misses to delete")],
    store: StoreOption = None,
):
    """Delete misses by ID."""
    had_errors = False
    with _get_misslog(store) as ml:
        for one_id in id:
            if ml.delete(one_id):
                typer.echo(f"Deleted {one_id}")
            else:
                typer.echo(f"Not found: {one_id}", err=True)
                had_errors = True
    if had_errors:
        raise typer.Exit(1)


@app.command("list")
def list_entries(
    topic: Annotated[Optional[str], typer.Option("--topic", "-T", help="Exact topic")] = None,
    tag: Annotated[Optional[str], typer.Option("--tag", "-t", help="Entries carrying this tag")] = None,
    why: Annotated[Optional[str], typer.Option("--why", "-w", help=WHY_HELP)] = None,
    search: Annotated[Optional[str], typer.Option(
        "--search", "-q", help="Text in topic, concept, rule or tags"
    )] = None,
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Maximum results to return"
    )] = None,
    store: StoreOption = None,
):
    """
    List misses, newest first.

    \b
    Examples:
        misslog list                       # Everything
        misslog list -t renal              # Tagged renal
        misslog list -w misread -q "s2"    # Misreads mentioning s2
    """
    if why is not None and why not in WHY_OPTIONS:
        typer.echo(f"Error: --why must be one of: {', '.join(WHY_OPTIONS)}", err=True)
        raise typer.Exit(1)
    with _get_misslog(store) as ml:
        results = ml.filter(topic=topic, tag=tag, why_missed=why, search=search)
    if limit is not None:
        results = results[:max(limit, 0)]
    typer.echo(_format_entries(results, as_json=_get_json_output()))


@app.command()
def topics(store: StoreOption = None):
    """List topics in use."""
    with _get_misslog(store) as ml:
        values = ml.topics_in_use()
    if _get_json_output():
        typer.echo(json.dumps(values))
    elif not values:
        typer.echo("No topics yet.")
    else:
        typer.echo("\n".join(values))


@app.command()
def tags(store: StoreOption = None):
    """List tags in use."""
    with _get_misslog(store) as ml:
        values = ml.tags_in_use()
    if _get_json_output():
        typer.echo(json.dumps(values))
    elif not values:
        typer.echo("No tags yet.")
    else:
        typer.echo("\n".join(values))


@app.command()
def weak(
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Number of tags to show (default: from config)"
    )] = None,
    store: StoreOption = None,
):
    """Show the most frequent tags across your misses."""
    with _get_misslog(store) as ml:
        if limit is None:
            limit = ml.config.weak_tag_limit if ml.config else 10
        ranking = ml.weak_tag_ranking(limit)
    typer.echo(_format_ranking(ranking, as_json=_get_json_output()))


@app.command()
def stats(store: StoreOption = None):
    """Show totals by reason, topic and tag."""
    with _get_misslog(store) as ml:
        summary = ml.stats()
    typer.echo(_format_stats(summary, as_json=_get_json_output()))


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
    store: StoreOption = None,
):
    """Delete every miss. This cannot be undone."""
    with _get_misslog(store) as ml:
        if len(ml) == 0:
            typer.echo("Nothing to clear.", err=True)
            return
        if not yes and not typer.confirm(
            f"Clear all {len(ml)} misses? This cannot be undone."
        ):
            raise typer.Exit(0)
        removed = ml.clear()
    typer.echo(f"Cleared {removed} misses.", err=True)


@app.command()
def config(
    path_only: Annotated[bool, typer.Option("--path", help="Print only the store path")] = False,
    store: StoreOption = None,
):
    """Show the store configuration."""
    actual_store = _resolve_store(store)
    try:
        cfg = load_or_create_config(get_store_path(actual_store))
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if path_only:
        typer.echo(str(cfg.path))
        return
    values = {
        "store": str(cfg.path),
        "config": str(cfg.config_path),
        "backend": cfg.backend,
        "key": cfg.key,
        "weak_tag_limit": cfg.weak_tag_limit,
    }
    if _get_json_output():
        typer.echo(json.dumps(values, indent=2))
    else:
        for k, v in values.items():
            typer.echo(f"{k}: {v}")


# -----------------------------------------------------------------------------
# Data Management
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Data management: export, import.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[Optional[str], typer.Argument(
        help="Output file path, '-' for stdout (default: misslog-YYYY-MM-DD.json)"
    )] = None,
    store: StoreOption = None,
):
    """Export all misses to a JSON file for backup or transfer."""
    with _get_misslog(store) as ml:
        text = ml.export_json()
        count = len(ml)
        output = output or ml.export_filename()

    if output == "-":
        typer.echo(text)
        return
    Path(output).write_text(text + "\n", encoding="utf-8")
    typer.echo(f"Exported {count} misses to {output}", err=True)


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON export file to import ('-' for stdin)")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
    store: StoreOption = None,
):
    """Replace all misses with the contents of a JSON export file."""
    if file == "-":
        text = sys.stdin.read()
    else:
        path = Path(file)
        if not path.exists():
            typer.echo(f"Error: file not found: {file}", err=True)
            raise typer.Exit(1)
        text = path.read_text(encoding="utf-8")

    try:
        records = parse_snapshot(text)
    except SnapshotImportError as e:
        typer.echo("Error: Could not import file. Please provide a valid JSON export.", err=True)
        typer.echo(f"  {e}", err=True)
        raise typer.Exit(1)

    with _get_misslog(store) as ml:
        if len(ml) and not yes and not typer.confirm(
            f"This will replace all {len(ml)} existing misses with "
            f"{len(records)} records from {file}. Continue?"
        ):
            raise typer.Exit(0)
        try:
            stats = ml.import_snapshot(records)
        except SnapshotImportError as e:
            typer.echo("Error: Could not import file. Please provide a valid JSON export.", err=True)
            typer.echo(f"  {e}", err=True)
            raise typer.Exit(1)

    typer.echo(
        f"Imported {stats.imported} misses, dropped {stats.dropped} incomplete records.",
        err=True,
    )


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="misslog CLI", store_path=_active_store or _store_override)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
