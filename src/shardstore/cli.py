"""Command line interface for the shardstore project."""

from __future__ import annotations

import base64
import difflib
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from shardstore.analysis import AnalysisDispatcher, AnalysisOutcome
from shardstore.config import (
    ConfigError,
    ConfigManager,
    LoggingSettings,
    ShardStoreConfig,
    resolve_with_precedence,
)
from shardstore.errors import ObjectNotFound, ShardStoreError
from shardstore.formats import MediaFormat
from shardstore.ingestion import IngestionPipeline, IngestionStore

console = Console()
err_console = Console(stderr=True)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(settings: LoggingSettings) -> None:
    """Attach rich and optional rotating file handlers to the package logger.

    Args:
        settings: Logging section of the loaded configuration.
    """
    logger = logging.getLogger("shardstore")
    logger.setLevel(settings.level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(RichHandler(console=err_console, show_path=False))
    if settings.file:
        log_path = Path(settings.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(file_handler)


def _load_config() -> ShardStoreConfig:
    manager = ConfigManager()
    manager.ensure_exists()
    config = manager.load()
    _configure_logging(config.logging)
    return config


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _quiet_enabled(ctx: click.Context, quiet: bool, config: ShardStoreConfig) -> bool:
    if ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE:
        return quiet
    return config.cli.quiet_default


def _outcome_table(outcomes: list[AnalysisOutcome]) -> Table:
    table = Table(title="Analysis")
    table.add_column("Endpoint")
    table.add_column("Status")
    table.add_column("Detail")
    styles = {"matched": "green", "not_found": "yellow", "service_error": "red"}
    for outcome in outcomes:
        if outcome.is_matched:
            detail = ", ".join(f"{key}={value}" for key, value in (outcome.metadata or {}).items())
        else:
            detail = outcome.detail or ""
        table.add_row(
            outcome.endpoint,
            f"[{styles[outcome.status]}]{outcome.status}[/{styles[outcome.status]}]",
            escape(detail),
        )
    return table


def _without_stamp(text: str) -> list[str]:
    return [line for line in text.splitlines() if not line.startswith("# Last updated")]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="shardstore")
def cli() -> None:
    """shardstore ingests images into a content-addressed store and sends them for analysis."""


@cli.command()
@click.argument("owner_id")
@click.option("--base64", "payload", type=str, help="Base64-encoded image to ingest.")
@click.option(
    "--image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Image file to ingest.",
)
@click.option("--no-analysis", is_flag=True, help="Store the image without dispatching it.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the result.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def ingest(
    ctx: click.Context,
    owner_id: str,
    payload: str | None,
    image: Path | None,
    no_analysis: bool,
    json_output: bool,
    quiet: bool,
) -> None:
    """Normalize, store, and analyse an image owned by OWNER_ID.

    Args:
        ctx: Click context used for parameter source inspection.
        owner_id: Identifier of the image owner.
        payload: Base64 image payload.
        image: Path of an image file to read instead of a payload.
        no_analysis: Skip dispatch to analysis endpoints.
        json_output: Emit JSON instead of formatted output.
        quiet: Suppress non-error output.
    """

    try:
        if (payload is None) == (image is None):
            raise click.ClickException("Provide exactly one of --base64 or --image.")
        config = _load_config()
        quiet_enabled = _quiet_enabled(ctx, quiet, config) and not json_output

        pipeline = IngestionPipeline.from_config(config, analyze=not no_analysis)
        try:
            if image is not None:
                result = pipeline.ingest_file(owner_id, image)
            else:
                result = pipeline.ingest_base64(owner_id, payload or "")
        finally:
            pipeline.close()

        if json_output:
            console.print_json(data=result.model_dump(mode="json"))
            return
        if quiet_enabled:
            return
        state = "stored" if result.created else "already stored"
        console.print(f"[green]{result.digest}[/green] {result.format.value} ({state})")
        console.print(str(result.path), soft_wrap=True)
        if result.outcomes:
            console.print(_outcome_table(result.outcomes))
        for error in result.errors:
            console.print(f"[yellow]analysis error: {error}[/yellow]")
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
    except (ShardStoreError, ValueError) as exc:
        _handle_cli_error(
            f"Ingestion failed: {exc}",
            code="ingest_error",
            json_output=json_output,
            details={"exception": type(exc).__name__},
            original=exc,
        )


@cli.command()
@click.argument("digest")
@click.option(
    "--endpoint",
    "endpoints",
    multiple=True,
    type=click.Choice(["face", "recognition"]),
    help="Endpoint to dispatch to (repeatable; defaults to every active endpoint).",
)
@click.option("--owner", "owner_id", default="", help="Owner identifier for metadata links.")
@click.option("--format", "media_format", default=MediaFormat.IMAGE.value, show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing outcomes.")
def analyze(
    digest: str,
    endpoints: tuple[str, ...],
    owner_id: str,
    media_format: str,
    json_output: bool,
) -> None:
    """Send the object stored for DIGEST to analysis endpoints.

    Args:
        digest: Digest of a stored object.
        endpoints: Endpoint names to target.
        owner_id: Owner identifier used in metadata back-references.
        media_format: Canonical format of the stored object.
        json_output: Emit JSON instead of a table.
    """

    try:
        config = _load_config()
        names = list(endpoints) or [name for name, _ in config.analysis.endpoints()]
        if not names:
            raise click.ClickException("No analysis endpoints are configured.")
        store = IngestionStore(config.store)
        with AnalysisDispatcher(config.analysis, store) as dispatcher:
            outcomes = [
                dispatcher.dispatch(name, owner_id, digest, media_format) for name in names
            ]

        if json_output:
            console.print_json(
                data={"outcomes": [outcome.model_dump(mode="json") for outcome in outcomes]}
            )
        else:
            console.print(_outcome_table(outcomes))
        if any(outcome.is_error for outcome in outcomes):
            raise SystemExit(1)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
    except (ShardStoreError, ValueError) as exc:
        _handle_cli_error(
            str(exc),
            code="not_found" if isinstance(exc, ObjectNotFound) else "analysis_error",
            json_output=json_output,
            original=exc,
        )


@cli.command()
@click.argument("digest")
@click.option("--format", "media_format", default=MediaFormat.IMAGE.value, show_default=True)
def locate(digest: str, media_format: str) -> None:
    """Print the stored path for DIGEST.

    Args:
        digest: Digest of a stored object.
        media_format: Canonical format of the stored object.
    """

    try:
        config = _load_config()
        path = IngestionStore(config.store).locate(digest, media_format)
    except (ConfigError, ShardStoreError) as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(str(path), soft_wrap=True)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def encode(path: Path) -> None:
    """Print the base64 encoding of the file at PATH.

    Args:
        path: File to encode.
    """

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise click.ClickException(f"Unable to read file: {exc}") from exc
    click.echo(base64.b64encode(data).decode("ascii"))


@cli.group()
def config() -> None:
    """Manage shardstore configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = _without_stamp(manager.read_text())
    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        manager.set_value(key, parsed_value)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    after = _without_stamp(manager.read_text())

    diff = list(
        difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )

    if diff:
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {key}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=ShardStoreConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
