"""Typer CLI for xui-harvester workflows."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from . import __version__
from .browser.session import BrowserLaunchOptions, PlaywrightBrowserSession
from .collectors.context import describe_search_date_range, shift_search_date_range
from .config import (
    VALID_OUTPUT_FORMATS,
    RuntimeConfig,
    config_to_dict,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
    resolve_state_path,
)
from .diagnostics.events import JsonlEventLogger
from .errors import ConfigError, HarvesterError, RenderError
from .extract.normalize import normalize_post_id
from .logging import configure_logging
from .models import Aggregate, OutputRow, RunContext
from .render import render_aggregate, render_rows
from .scheduler.engine import EngineSettings, HarvestEngine, HarvestResult
from .scheduler.orchestrator import CrawlOrchestrator
from .scheduler.search import SearchCrawlResult, run_search_crawl
from .store import records
from .store.checkpoints import CheckpointStore
from .store.sqlite import SQLiteStateStore

app = typer.Typer(help="Harvest posts and reply threads from the X web UI.")

config_app = typer.Typer(help="Config commands.")
search_app = typer.Typer(help="Multi-page search crawl commands.")
checkpoint_app = typer.Typer(help="Remembered ids and resume cursor commands.")

app.add_typer(config_app, name="config")
app.add_typer(search_app, name="search")
app.add_typer(checkpoint_app, name="checkpoint")

_FORMAT_EXTENSIONS = {"pretty": "txt", "plain": "tsv", "json": "json", "jsonl": "jsonl"}


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    try:
        written_path = init_default_config(_config_path(ctx), force=force)
    except ConfigError as exc:
        typer.secho(f"Config init failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(f"Wrote default config to {written_path}")


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Render resolved config as JSON."),
) -> None:
    path = _config_path(ctx)
    resolved_path = resolve_config_path(path)
    try:
        config = load_runtime_config(path)
    except ConfigError as exc:
        typer.secho(f"Config show failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    payload = {
        "path": str(resolved_path),
        "state_path": str(resolve_state_path(config)),
        "config": config_to_dict(config),
    }
    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Resolved config path: {payload['path']}")
    typer.echo(f"State database: {payload['state_path']}")
    typer.echo(f"Default format: {config.app.default_format}")
    typer.echo(f"Browser: {config.browser.engine} (headless={config.browser.headless})")
    typer.echo(f"Wait for translation overlay: {config.translation.wait_for_overlay}")


@app.command("harvest")
def harvest(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Replies timeline, status page or search URL to harvest."),
    max_ticks: int | None = typer.Option(None, "--max-ticks", min=1, help="Stop after N ticks."),
    output: Path | None = typer.Option(None, "--output", help="Write rendered output to this file."),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
    no_remember: bool = typer.Option(
        False, "--no-remember", help="Ignore and do not update remembered ids for this run."
    ),
    wait_for_overlay: bool | None = typer.Option(
        None,
        "--wait-for-overlay/--no-wait-for-overlay",
        help="Hold posts back until a translation overlay attaches (defaults to config).",
    ),
) -> None:
    try:
        config = _load_config(ctx)
        output_format = _resolve_output_format(ctx, config_default=config.app.default_format)
        event_logger = _event_logger(ctx, config)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            with _open_browser(config, headful=headful) as session:
                source = session.new_page_source()
                source.navigate(url)
                checkpoints = CheckpointStore(
                    store,
                    remember_enabled=config.checkpoint.remember_ids and not no_remember,
                    save_debounce_ms=config.checkpoint.save_debounce_ms,
                )
                engine = HarvestEngine(
                    source,
                    checkpoints,
                    settings=EngineSettings.from_config(config, wait_for_overlay=wait_for_overlay),
                    sleep_fn=source.wait,
                    event_logger=event_logger,
                )
                run_id = store.begin_run(source.url, engine.context.mode.value)
                result = engine.run(max_ticks=max_ticks)
                store.finish_run(
                    run_id,
                    status="finalized" if result.finalized else "cancelled",
                    accepted_count=result.accepted,
                    stop_reason=result.stop_reason,
                )
        _emit_text(render_rows(result.rows, output_format), output)
    except HarvesterError as exc:
        typer.secho(f"Harvest failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.secho(_summary_line(result), err=True)


@search_app.command("start")
def search_start(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Search results URL whose status links become the queue."),
    max_targets: int | None = typer.Option(
        None, "--max-targets", min=1, help="Queue at most N status pages (defaults to config)."
    ),
    max_pages: int | None = typer.Option(
        None, "--max-pages", min=1, help="Harvest at most N pages in this invocation."
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", help="Write one file per page plus the aggregate into this directory."
    ),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
) -> None:
    _run_search(ctx, search_url=url, max_targets=max_targets, max_pages=max_pages, output_dir=output_dir, headful=headful)


@search_app.command("resume")
def search_resume(
    ctx: typer.Context,
    max_pages: int | None = typer.Option(
        None, "--max-pages", min=1, help="Harvest at most N pages in this invocation."
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", help="Write one file per page plus the aggregate into this directory."
    ),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
) -> None:
    _run_search(ctx, search_url=None, max_targets=None, max_pages=max_pages, output_dir=output_dir, headful=headful)


@search_app.command("status")
def search_status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Render crawl run state as JSON."),
) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            orchestrator = CrawlOrchestrator(store)
            run = orchestrator.run_state
            aggregate = orchestrator.aggregate
            payload = {
                "state": orchestrator.state.value,
                "run": records.run_state_to_dict(run) if run is not None else None,
                "aggregate_entries": len(aggregate.entries) if aggregate is not None else 0,
            }
            text = orchestrator.status_text()
    except HarvesterError as exc:
        typer.secho(f"Search status failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return
    typer.echo(text)
    if run is not None and run.current_target:
        typer.echo(f"Next target: {run.current_target}")


@search_app.command("pause")
def search_pause(ctx: typer.Context) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            orchestrator = CrawlOrchestrator(store)
            orchestrator.pause()
            text = orchestrator.status_text()
    except HarvesterError as exc:
        typer.secho(f"Search pause failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(text)


@search_app.command("toggle-pause")
def search_toggle_pause(ctx: typer.Context) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            orchestrator = CrawlOrchestrator(store)
            orchestrator.toggle_pause()
            text = orchestrator.status_text()
    except HarvesterError as exc:
        typer.secho(f"Search toggle-pause failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(text)


@search_app.command("cancel")
def search_cancel(ctx: typer.Context) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            result = CrawlOrchestrator(store).cancel()
    except HarvesterError as exc:
        typer.secho(f"Search cancel failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(f"Crawl run {result.state.value}.")


@search_app.command("shift")
def search_shift(
    url: str = typer.Argument(..., help="Search URL containing since:/until: dates."),
    direction: int = typer.Option(1, "--direction", min=-1, max=1, help="1 moves forward, -1 backward."),
) -> None:
    if direction == 0:
        typer.secho("Search shift failed: --direction must be 1 or -1.", err=True, fg=typer.colors.RED)
        raise typer.Exit(2)
    try:
        shifted = shift_search_date_range(url, direction)
    except HarvesterError as exc:
        typer.secho(f"Search shift failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(shifted)
    typer.secho(describe_search_date_range(shifted), err=True)


@checkpoint_app.command("show")
def checkpoint_show(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Render checkpoint state as JSON."),
    runs: int = typer.Option(5, "--runs", min=0, help="Number of recent harvest runs to list."),
) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            checkpoints = CheckpointStore(store)
            cursor = checkpoints.resume_cursor
            recent = store.recent_runs(runs) if runs else ()
            payload = {
                "remembered_ids": len(checkpoints.remembered_ids),
                "resume_cursor": (
                    {"id": cursor.post_id, "exclusive": cursor.exclusive} if cursor is not None else None
                ),
                "crawl": CrawlOrchestrator(store).state.value,
                "recent_runs": [
                    {
                        "run_id": run.run_id,
                        "page_url": run.page_url,
                        "mode": run.mode,
                        "status": run.status,
                        "accepted_count": run.accepted_count,
                        "stop_reason": run.stop_reason,
                    }
                    for run in recent
                ],
            }
            status_text = checkpoints.status_text()
    except HarvesterError as exc:
        typer.secho(f"Checkpoint show failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return
    typer.echo(f"Remembered ids: {payload['remembered_ids']}")
    typer.echo(status_text)
    typer.echo(f"Crawl run: {payload['crawl']}")
    for run in recent:
        typer.echo(f"- #{run.run_id} {run.status} {run.accepted_count} posts {run.stop_reason or '-'} {run.page_url}")


@checkpoint_app.command("set-cursor")
def checkpoint_set_cursor(
    ctx: typer.Context,
    post: str = typer.Argument(..., help="Post id or status URL to resume from."),
    exclusive: bool = typer.Option(
        False, "--exclusive", help="Start after this post instead of at it."
    ),
) -> None:
    post_id = normalize_post_id(post)
    if not post_id:
        typer.secho(f"Checkpoint set-cursor failed: '{post}' is not a post id or status URL.", err=True, fg=typer.colors.RED)
        raise typer.Exit(2)
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            checkpoints = CheckpointStore(store)
            checkpoints.set_resume_cursor(post_id, exclusive=exclusive)
            text = checkpoints.status_text()
    except HarvesterError as exc:
        typer.secho(f"Checkpoint set-cursor failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(text)


@checkpoint_app.command("clear-cursor")
def checkpoint_clear_cursor(ctx: typer.Context) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            checkpoints = CheckpointStore(store)
            checkpoints.clear_resume_cursor()
            text = checkpoints.status_text()
    except HarvesterError as exc:
        typer.secho(f"Checkpoint clear-cursor failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(text)


@checkpoint_app.command("export")
def checkpoint_export(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="File to write remembered ids to (JSON)."),
) -> None:
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            payload = CheckpointStore(store).export_payload()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except (HarvesterError, OSError) as exc:
        typer.secho(f"Checkpoint export failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(f"Exported {len(payload['ids'])} ids to {path}")


@checkpoint_app.command("import")
def checkpoint_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="JSON export or newline-separated id list."),
) -> None:
    try:
        raw = path.read_text(encoding="utf-8")
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            added, total = CheckpointStore(store).import_payload(raw)
    except (HarvesterError, OSError) as exc:
        typer.secho(f"Checkpoint import failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(f"Imported {added} new ids ({total} remembered).")


@checkpoint_app.command("forget")
def checkpoint_forget(
    ctx: typer.Context,
    posts: list[str] = typer.Argument(..., help="Post ids or status URLs to forget."),
) -> None:
    post_ids = [post_id for post_id in (normalize_post_id(post) for post in posts) if post_id]
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            removed = CheckpointStore(store).forget_ids(post_ids)
    except HarvesterError as exc:
        typer.secho(f"Checkpoint forget failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(f"Forgot {removed} ids.")


@checkpoint_app.command("clear")
def checkpoint_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
) -> None:
    if not yes:
        typer.confirm("Forget every remembered id?", abort=True)
    try:
        config = _load_config(ctx)
        with SQLiteStateStore(resolve_state_path(config)) as store:
            count = CheckpointStore(store).clear_remembered()
    except HarvesterError as exc:
        typer.secho(f"Checkpoint clear failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc
    typer.echo(f"Cleared {count} remembered ids.")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show xui-harvester version and exit."),
    config_path: str | None = typer.Option(
        None, "--config", help="Optional config TOML path (defaults to platform config dir)."
    ),
    output_format: str | None = typer.Option(
        None,
        "--format",
        help="Output format: pretty|plain|json|jsonl.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging and run event logs."),
) -> None:
    ctx.obj = {
        "config_path": config_path,
        "output_format": output_format,
        "debug": debug,
    }
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    configure_logging(debug)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _run_search(
    ctx: typer.Context,
    *,
    search_url: str | None,
    max_targets: int | None,
    max_pages: int | None,
    output_dir: Path | None,
    headful: bool,
) -> None:
    try:
        config = _load_config(ctx)
        output_format = _resolve_output_format(ctx, config_default=config.app.default_format)
        event_logger = _event_logger(ctx, config)

        def _page_done(context: RunContext, rows: tuple[OutputRow, ...]) -> None:
            text = render_rows(rows, output_format)
            if output_dir is None:
                typer.echo(text)
                return
            name = f"{context.export_key}_{context.root_rest_id or 'page'}.{_FORMAT_EXTENSIONS[output_format]}"
            _emit_text(text, output_dir / name)

        def _aggregate_done(aggregate: Aggregate) -> None:
            text = render_aggregate(aggregate, output_format)
            if output_dir is None:
                typer.echo(text)
                return
            name = f"{aggregate.owner_key}_aggregate.{_FORMAT_EXTENSIONS[output_format]}"
            _emit_text(text, output_dir / name)

        with SQLiteStateStore(resolve_state_path(config)) as store:
            with _open_browser(config, headful=headful) as session:
                source = session.new_page_source()
                result = run_search_crawl(
                    source,
                    store,
                    config=config,
                    search_url=search_url,
                    max_targets=max_targets,
                    max_pages=max_pages,
                    on_page_finalized=_page_done,
                    export_aggregate=_aggregate_done,
                    sleep_fn=source.wait,
                    event_logger=event_logger,
                )
    except HarvesterError as exc:
        typer.secho(f"Search crawl failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.secho(_search_summary_line(result), err=True)


def _open_browser(config: RuntimeConfig, *, headful: bool) -> PlaywrightBrowserSession:
    options = BrowserLaunchOptions.from_config(config.browser, headless=False if headful else None)
    return PlaywrightBrowserSession(options)


def _emit_text(text: str, output: Path | None) -> None:
    if output is None:
        typer.echo(text)
        return
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
    except OSError as exc:
        raise RenderError(f"Could not write output file '{output}': {exc}") from exc
    typer.secho(f"Wrote {output}", err=True)


def _summary_line(result: HarvestResult) -> str:
    return (
        f"{result.context.mode.value}: {len(result.rows)} rows from {result.accepted} posts "
        f"in {result.ticks} ticks (stop: {result.stop_reason or '-'})."
    )


def _search_summary_line(result: SearchCrawlResult) -> str:
    return (
        f"Crawl {result.state.value}: {len(result.pages)} pages harvested, "
        f"{result.queued} targets queued."
    )


def _config_path(ctx: typer.Context | None) -> str | None:
    if ctx is None or not isinstance(ctx.obj, dict):
        return None
    value = ctx.obj.get("config_path")
    return value if isinstance(value, str) and value else None


def _load_config(ctx: typer.Context | None) -> RuntimeConfig:
    return load_runtime_config(_config_path(ctx))


def _resolve_output_format(ctx: typer.Context | None, *, config_default: str) -> str:
    configured: str | None = None
    if ctx is not None and isinstance(ctx.obj, dict):
        value = ctx.obj.get("output_format")
        if isinstance(value, str) and value:
            configured = value
    resolved = configured or config_default
    if resolved not in VALID_OUTPUT_FORMATS:
        supported = ", ".join(sorted(VALID_OUTPUT_FORMATS))
        raise RenderError(
            f"Invalid output format '{resolved}'. Supported formats: {supported}."
        )
    return resolved


def _resolve_debug(ctx: typer.Context | None, config: RuntimeConfig) -> bool:
    if ctx is not None and isinstance(ctx.obj, dict) and ctx.obj.get("debug"):
        return True
    return config.app.debug


def _event_logger(ctx: typer.Context | None, config: RuntimeConfig) -> JsonlEventLogger | None:
    if not _resolve_debug(ctx, config):
        return None
    return JsonlEventLogger(resolve_state_path(config).parent / "logs" / "run-events.jsonl")
