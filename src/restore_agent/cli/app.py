"""Main CLI application for the restore agent."""

import asyncio
from typing import Annotated

import typer
from rich.markup import escape

from restore_agent.cli.commands.restore import run_restore
from restore_agent.config.models import RestoreOverrides
from restore_agent.core.errors import RestoreError
from restore_agent.core.identity import parse_worker_name
from restore_agent.core.logging import get_logger, setup_logging

logger = get_logger(__name__)

app = typer.Typer(
    name="restore-agent",
    help="Restore a worker's shard from a bucket of archived backups",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
    trace: Annotated[
        bool, typer.Option("--trace", help="Enable trace logging (most verbose)")
    ] = False,
) -> None:
    """Restore agent - per-worker restore of sharded backups."""
    setup_logging(verbose=verbose, trace=trace)


@app.command()
def restore(
    config: Annotated[
        str,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = "",
    src: Annotated[
        str,
        typer.Option("--src", help="Source bucket URI, e.g. s3://bucket/path"),
    ] = "",
    dst: Annotated[
        str,
        typer.Option("--dst", help="Destination filesystem path"),
    ] = "",
    hostname: Annotated[
        str,
        typer.Option("--hostname", help="Worker name, defaults to the machine hostname"),
    ] = "",
    secret_name: Annotated[
        str,
        typer.Option("--secret-name", help="Secret name for the bucket credentials"),
    ] = "",
    restore_id: Annotated[
        str,
        typer.Option("--restore-id", help="Identifier of this restore operation"),
    ] = "",
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Abort the restore after this many seconds", min=0.001),
    ] = None,
) -> None:
    """Restore this worker's backup into the destination directory."""
    overrides = RestoreOverrides(
        bucket=src,
        destination=dst,
        hostname=hostname,
        secret_name=secret_name,
        restore_id=restore_id,
        timeout_seconds=timeout,
    )

    try:
        outcome = asyncio.run(run_restore(config, overrides))
    except (RestoreError, ValueError, FileNotFoundError) as e:
        logger.error(f"Restore failed: {escape(str(e))}")
        raise typer.Exit(code=1) from e
    except TimeoutError as e:
        logger.error("Restore timed out, partial data may be left on disk")
        raise typer.Exit(code=1) from e

    logger.info("Restore finished", outcome=outcome.value)


@app.command()
def ordinal(
    hostname: Annotated[str, typer.Argument(help="Worker name, e.g. cluster-3")],
) -> None:
    """Print the ordinal encoded in a worker name."""
    try:
        worker = parse_worker_name(hostname)
    except RestoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(str(worker.ordinal))


if __name__ == "__main__":
    app()
