"""
SBExplorer Command-Line Interface

Commands to serve the HTTP API, manage namespaces, and inspect, resubmit,
delete or purge dead-lettered messages.

Author: SBExplorer Contributors
Date: 2026-01-21
"""

import asyncio
import json
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
import uvicorn
from fastapi import FastAPI, Response

from sbexplorer import __version__
from sbexplorer.core.config_manager import ConfigManager, ExplorerConfig
from sbexplorer.core.logging_config import setup_logging
from sbexplorer.servicebus.addressing import resolve_target
from sbexplorer.servicebus.api import router as explorer_router
from sbexplorer.servicebus.error_handlers import register_exception_handlers
from sbexplorer.servicebus.exceptions import ConfigurationError, ExplorerError, PartialSuccessError
from sbexplorer.servicebus.middleware import CorrelationMiddleware
from sbexplorer.servicebus.models import MessageIdentity
from sbexplorer.servicebus.service import MAX_PEEK_COUNT, ExplorerService


def create_app(service: Optional[ExplorerService] = None, config: Optional[ExplorerConfig] = None) -> FastAPI:
    """
    Create the FastAPI application.

    The service restores saved namespaces on startup and is disposed on
    shutdown.
    """
    if service is None:
        config = config or ConfigManager().load()
        service = ExplorerService.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.restore()
        try:
            yield
        finally:
            await service.dispose()

    app = FastAPI(
        title="SBExplorer",
        description="Dead-letter explorer for Service Bus namespaces",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.add_middleware(CorrelationMiddleware)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics."""
        return Response(
            content=service.metrics.generate_metrics(),
            media_type=service.metrics.get_content_type(),
        )

    app.include_router(explorer_router)
    register_exception_handlers(app)
    return app


# ========== Helpers ==========

def _level_name(level: Any) -> str:
    return str(getattr(level, "value", level))


def _run(ctx: click.Context, operation: Callable[[ExplorerService], Awaitable[Any]]) -> Any:
    """Run ``operation`` against a restored service, translating errors to exit codes."""
    factory = ctx.obj.get("service_factory", ExplorerService.from_config)
    config: ExplorerConfig = ctx.obj["config"]

    async def runner():
        service = factory(config)
        try:
            await service.restore()
            return await operation(service)
        finally:
            await service.dispose()

    try:
        return asyncio.run(runner())
    except PartialSuccessError as e:
        click.echo(f"[WARNING] {e.message}", err=True)
        return None
    except ExplorerError as e:
        click.echo(f"[ERROR] {e.message}", err=True)
        sys.exit(1)


def _target_options(func):
    func = click.option("--subscription", "-s", "subscription_name", help="Subscription name (with --topic)")(func)
    func = click.option("--topic", "-t", "topic_name", help="Topic name (with --subscription)")(func)
    func = click.option("--queue", "-q", "queue_name", help="Queue name")(func)
    return func


def _identity_options(func):
    func = click.option("--message-id", "-m", help="Message id of the target message")(func)
    func = click.option("--sequence-number", "-n", help="Sequence number of the target message")(func)
    return func


def _target(queue_name, topic_name, subscription_name):
    try:
        return resolve_target(queue_name, topic_name, subscription_name)
    except ConfigurationError as e:
        raise click.UsageError(e.message)


def _identity(sequence_number, message_id) -> MessageIdentity:
    try:
        identity = MessageIdentity(sequence_number=sequence_number, message_id=message_id)
    except ValueError as e:
        raise click.UsageError(str(e))
    if identity.is_empty:
        raise click.UsageError("give --sequence-number or --message-id")
    return identity


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ========== Commands ==========

@click.group()
@click.version_option(version=__version__, prog_name="sbexplorer")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], log_level: Optional[str]):
    """
    SBExplorer - Service Bus dead-letter explorer

    Find, resubmit, delete and purge dead-lettered messages.
    """
    ctx.ensure_object(dict)
    overrides = {"logging": {"level": log_level.upper()}} if log_level else None
    config = ConfigManager().load(
        config_file=str(config_file) if config_file else None,
        cli_overrides=overrides,
    )
    ctx.obj["config"] = config
    setup_logging(config.logging)


@cli.command()
@click.option("--host", help="Host to bind to (default from configuration)")
@click.option("--port", type=int, help="Port to bind to (default from configuration)")
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """
    Serve the HTTP API.

    Examples:
        sbexplorer serve
        sbexplorer --log-level DEBUG serve --port 8080
    """
    config: ExplorerConfig = ctx.obj["config"]
    host = host or config.server.host
    port = port or config.server.port

    click.echo(f"Starting SBExplorer v{__version__}")
    click.echo(f"Host: {host}:{port}")

    app = create_app(config=config)
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level=_level_name(config.logging.level).lower(),
            access_log=True,
        )
    except KeyboardInterrupt:
        click.echo("\nShutting down SBExplorer...")


@cli.group()
def namespace():
    """Manage registered namespaces."""


@namespace.command("add")
@click.argument("name_or_connection_string")
@click.pass_context
def namespace_add(ctx, name_or_connection_string: str):
    """Register a namespace by name or connection string."""
    info = _run(ctx, lambda service: service.add_namespace(name_or_connection_string))
    click.echo(f"Added {info.namespace} ({info.auth_mode})")


@namespace.command("remove")
@click.argument("name")
@click.pass_context
def namespace_remove(ctx, name: str):
    """Forget a namespace and its stored secret."""
    _run(ctx, lambda service: service.remove_namespace(name))
    click.echo(f"Removed {name}")


@namespace.command("list")
@click.pass_context
def namespace_list(ctx):
    """List registered namespaces."""
    async def operation(service: ExplorerService):
        return service.list_namespaces()

    namespaces = _run(ctx, operation)
    if not namespaces:
        click.echo("No namespaces registered")
        return
    for info in namespaces:
        click.echo(f"{info.namespace}\t{info.auth_mode}")


@cli.command()
@click.argument("namespace_name")
@click.pass_context
def queues(ctx, namespace_name: str):
    """List queues with active and dead-letter counts."""
    for info in _run(ctx, lambda service: service.list_queues(namespace_name)):
        click.echo(f"{info.name}\tactive={info.active_message_count}\tdead-letter={info.dead_letter_message_count}")


@cli.command()
@click.argument("namespace_name")
@click.pass_context
def topics(ctx, namespace_name: str):
    """List topics with subscription count and summed message counts."""
    for info in _run(ctx, lambda service: service.list_topics(namespace_name)):
        click.echo(
            f"{info.name}\tsubscriptions={info.subscription_count}"
            f"\tactive={info.active_message_count}\tdead-letter={info.dead_letter_message_count}"
        )


@cli.command()
@click.argument("namespace_name")
@click.argument("topic_name")
@click.pass_context
def subscriptions(ctx, namespace_name: str, topic_name: str):
    """List a topic's subscriptions with message counts."""
    for info in _run(ctx, lambda service: service.list_subscriptions(namespace_name, topic_name)):
        click.echo(f"{info.name}\tactive={info.active_message_count}\tdead-letter={info.dead_letter_message_count}")


@cli.command()
@click.argument("namespace_name")
@_target_options
@click.option("--dead-letter/--active", default=True, help="Peek the dead-letter queue (default) or the entity")
@click.option("--max-count", default=MAX_PEEK_COUNT, type=int, show_default=True, help="Messages to peek (1-100)")
@click.pass_context
def peek(ctx, namespace_name, queue_name, topic_name, subscription_name, dead_letter: bool, max_count: int):
    """Peek messages as JSON."""
    target = _target(queue_name, topic_name, subscription_name)

    async def operation(service: ExplorerService):
        if dead_letter:
            return await service.peek_dead_letter(namespace_name, target, max_count)
        return await service.peek_active(namespace_name, target, max_count)

    messages = _run(ctx, operation)
    _echo_json([message.to_dict() for message in messages])


@cli.command()
@click.argument("namespace_name")
@_target_options
@_identity_options
@click.pass_context
def resubmit(ctx, namespace_name, queue_name, topic_name, subscription_name, sequence_number, message_id):
    """Send a dead-lettered message back to its queue or topic."""
    target = _target(queue_name, topic_name, subscription_name)
    identity = _identity(sequence_number, message_id)
    result = _run(ctx, lambda service: service.resubmit(namespace_name, target, identity))
    if result is not None:
        click.echo(
            f"Resubmitted {result.resent_message_id} to {target.send_entity} "
            f"(path={result.path.value}, removed via {result.removed_via})"
        )


@cli.command()
@click.argument("namespace_name")
@_target_options
@_identity_options
@click.pass_context
def delete(ctx, namespace_name, queue_name, topic_name, subscription_name, sequence_number, message_id):
    """Delete one dead-lettered message."""
    target = _target(queue_name, topic_name, subscription_name)
    identity = _identity(sequence_number, message_id)
    _run(ctx, lambda service: service.delete_dead_letter(namespace_name, target, identity))
    click.echo(f"Deleted {identity} from {target}")


@cli.command()
@click.argument("namespace_name")
@_target_options
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def purge(ctx, namespace_name, queue_name, topic_name, subscription_name, yes: bool):
    """Remove every message from a dead-letter queue."""
    target = _target(queue_name, topic_name, subscription_name)
    if not yes:
        click.confirm(f"Purge all dead-lettered messages of {target}?", abort=True)
    count = _run(ctx, lambda service: service.purge_dead_letter(namespace_name, target))
    click.echo(f"Purged {count} messages from {target}")


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
