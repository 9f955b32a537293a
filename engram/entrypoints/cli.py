"""Engram CLI entrypoint.

Runs the sidecar engines over stdin/stdout and provides maintenance commands
for config files and record logs.
"""

from __future__ import annotations

import functools
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from engram.adapters.rpc.dispatcher import Dispatcher
    from engram.core.store.memory_store import MemoryStore
    from engram.domain.config import EngramConfig

from engram.core.errors import EngramCliError
from engram.domain.exceptions import EngramDomainError, StoreError
from engram.version import __version__

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def handle_cli_errors(command_name: str):
    """Decorator to handle common CLI errors.

    Domain errors keep their message and hint; RuntimeError and unexpected
    exceptions become EngramCliError, with a traceback in verbose mode.

    Args:
        command_name: Name of the command for error messages.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except EngramCliError:
                raise
            except EngramDomainError as e:
                raise EngramCliError(e.message, hint=e.hint) from e
            except RuntimeError as e:
                raise EngramCliError(
                    str(e),
                    hint="Run with --verbose for more details",
                ) from e
            except Exception as e:
                ctx = click.get_current_context()
                if ctx.obj.get("verbose", False):
                    import traceback

                    traceback.print_exc()
                raise EngramCliError(
                    f"Unexpected error in {command_name}: {e}",
                    hint="Run with --verbose for more details",
                ) from e

        return wrapper

    return decorator


def _load_config(ctx: click.Context) -> EngramConfig:
    """Load global config plus the --config file, if given."""
    from engram.adapters.config.toml_config_provider import TomlConfigProvider

    config_path = ctx.obj.get("config_path")
    try:
        return TomlConfigProvider().load(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise EngramCliError(
            str(e), hint="Check the file passed with --config"
        ) from e


def _configure_engine_logging(
    ctx: click.Context,
    config: EngramConfig,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    from engram.adapters.rpc.server import configure_logging

    if ctx.obj.get("verbose", False):
        level = "DEBUG"
    elif ctx.obj.get("quiet", False):
        level = "WARNING"
    else:
        level = log_level or config.server.log_level
    if log_file is None and config.server.log_file:
        log_file = Path(config.server.log_file).expanduser()
    configure_logging(level, log_file)


def _run_engine(dispatcher: Dispatcher, on_shutdown: Callable[[], None]) -> int:
    """Serve ``dispatcher`` on the process's stdin/stdout."""
    from engram.adapters.rpc.server import EngineServer
    from engram.adapters.rpc.transport import LineTransport

    transport = LineTransport(sys.stdin.buffer, sys.stdout.buffer)
    server = EngineServer(transport, dispatcher, on_shutdown=on_shutdown)
    return server.run()


def _close_store(store: MemoryStore) -> None:
    try:
        store.close()
    except StoreError as e:
        logger.error("Failed to close store: %s", e.message)


@click.group()
@click.version_option(version=__version__, prog_name="engram")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output (DEBUG logging for engines).",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress non-essential output.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file layered over the global config.",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, config_path: Path | None) -> None:
    """Engram - local vector memory engines for a host process."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = config_path


@cli.group()
def serve() -> None:
    """Run an engine speaking JSON-RPC lines on stdin/stdout.

    Logs go to stderr. The engine exits 0 when stdin closes.
    """


@serve.command(name="store")
@click.option(
    "--storage-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Default storage path when store/initialize omits one.",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default=None, help="Log level.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file.",
)
@click.pass_context
@handle_cli_errors("serve store")
def serve_store(
    ctx: click.Context,
    storage_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """Run the vector memory store engine."""
    from engram.adapters.rpc.dispatcher import Dispatcher
    from engram.adapters.rpc.store_methods import register_store_methods
    from engram.core.store.memory_store import MemoryStore

    config = _load_config(ctx)
    _configure_engine_logging(ctx, config, log_level, log_file)

    store_config = config.store.with_overrides(
        storage_path=str(storage_path) if storage_path is not None else None
    )
    store = MemoryStore(store_config)
    dispatcher = Dispatcher("store")
    register_store_methods(dispatcher, store)
    sys.exit(_run_engine(dispatcher, on_shutdown=lambda: _close_store(store)))


@serve.command(name="embed")
@click.option(
    "--model",
    default=None,
    help="Default model for prompts that do not name one.",
)
@click.option(
    "--preload",
    multiple=True,
    help="Load this model before serving (repeatable).",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default=None, help="Log level.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file.",
)
@click.pass_context
@handle_cli_errors("serve embed")
def serve_embed(
    ctx: click.Context,
    model: str | None,
    preload: tuple[str, ...],
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """Run the embedding engine."""
    from engram.adapters.local_models.registry import EmbedderRegistry, resolve_model_name
    from engram.adapters.rpc.dispatcher import Dispatcher
    from engram.adapters.rpc.embed_methods import register_embedding_methods

    config = _load_config(ctx)
    _configure_engine_logging(ctx, config, log_level, log_file)

    try:
        default_model = resolve_model_name(model or config.embedding.model)
    except ValueError as e:
        raise EngramCliError(str(e), hint="Run 'engram models' to list models") from e

    registry = EmbedderRegistry(
        batch_size=config.embedding.batch_size, device=config.embedding.device
    )
    for name in [*config.embedding.preload, *preload]:
        registry.load(name)

    dispatcher = Dispatcher("embedding")
    register_embedding_methods(dispatcher, registry, default_model)
    sys.exit(_run_engine(dispatcher, on_shutdown=registry.clear))


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--repair",
    is_flag=True,
    help="Truncate an incomplete trailing record left by an unclean shutdown.",
)
@click.pass_context
@handle_cli_errors("verify")
def verify(ctx: click.Context, path: Path, repair: bool) -> None:
    """Check a store's record log for corruption.

    PATH is the log file or the directory holding entries.log.
    """
    from engram.adapters.journal.record_log import RecordLog, inspect_log

    report = inspect_log(path)
    if "error" not in report:
        dimension = report["dimension"] if report["dimension"] is not None else "-"
        click.echo(
            f"✓ {report['path']}: {report['records']} records, "
            f"{report['entries']} live entries (dim {dimension})"
        )
        return

    if report["recoverable"] and repair:
        with RecordLog(path) as log:
            result = log.load(recover_truncated=True)
        click.echo(
            f"✓ Repaired {report['path']}: dropped {result.truncated_bytes} bytes, "
            f"{len(result.entries)} live entries"
        )
        return

    if report["recoverable"]:
        hint = "Run 'engram verify --repair' to drop the incomplete trailing record"
    else:
        hint = "Restore the store from a backup or remove the file to start over"
    raise EngramCliError(f"{report['path']}: {report['error']}", hint=hint)


@cli.command()
@click.pass_context
@handle_cli_errors("models")
def models(ctx: click.Context) -> None:
    """List the embedding models the embedding engine can load."""
    from engram.adapters.local_models.registry import is_model_cached, list_available_models

    for info in list_available_models():
        cached = "cached" if is_model_cached(info["name"]) else "not downloaded"
        click.echo(f"{info['preset']:<14} {info['name']}")
        if not ctx.obj.get("quiet", False):
            click.echo(
                f"{'':<14} dim={info['dim']} params={info['params']} "
                f"memory={info['memory']} ({cached})"
            )
            click.echo(f"{'':<14} {info['description']}")


@cli.group()
def config() -> None:
    """Manage configuration files."""


@config.command(name="init")
@click.option(
    "--path",
    "target",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Where to write the file (default: global config path).",
)
@click.option("--model", default="minilm", help="Default embedding model preset.")
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
@click.pass_context
@handle_cli_errors("config init")
def config_init(ctx: click.Context, target: Path | None, model: str, force: bool) -> None:
    """Write a commented default config.toml."""
    from engram.adapters.local_models.registry import resolve_model_name
    from engram.shared.config_io import create_default_config_file, get_global_config_path

    try:
        resolve_model_name(model)
    except ValueError as e:
        raise EngramCliError(str(e), hint="Run 'engram models' to list models") from e

    path = target or get_global_config_path()
    if path.exists() and not force:
        raise EngramCliError(
            f"Config file already exists: {path}",
            hint="Pass --force to overwrite it",
        )
    create_default_config_file(path, model=model)
    click.echo(f"Created config at {path}")


@config.command(name="show")
@click.pass_context
@handle_cli_errors("config show")
def config_show(ctx: click.Context) -> None:
    """Show config file locations and the effective settings."""
    import tomli_w

    from engram.shared.config_io import config_to_data, get_global_config_path

    global_path = get_global_config_path()
    status = "exists" if global_path.exists() else "not found"
    click.echo(f"Global config: {global_path} ({status})")
    config_path = ctx.obj.get("config_path")
    if config_path is not None:
        click.echo(f"Config file:   {config_path}")

    effective = _load_config(ctx)
    click.echo("")
    click.echo("Effective configuration:")
    click.echo(tomli_w.dumps(config_to_data(effective)).rstrip())


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
