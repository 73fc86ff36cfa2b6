"""
postdeploy - Command Line Entry Point

Thin layer that:
1. Loads configuration once
2. Configures logging
3. Runs one orchestrator operation and exits
"""

import asyncio
import logging
import sys
import uuid

import click
from dotenv import load_dotenv

from postdeploy.config.provider import EnvConfigProvider, PostDeploymentConfig
from postdeploy.logging_config import configure_logging
from postdeploy.modules.orchestrator import PostDeploymentOrchestrator

logger = logging.getLogger("postdeploy")


def _build(ctx: click.Context) -> PostDeploymentOrchestrator:
    config: PostDeploymentConfig = ctx.obj["config"]
    return PostDeploymentOrchestrator(config, tracer=logger)


def _execute(coro) -> None:
    try:
        asyncio.run(coro)
    except Exception as e:
        logger.error("Post-deployment operation failed: %s", e)
        sys.exit(1)


@click.group()
@click.option("--log-level", "log_level", default=None, help="Overrides LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level: str):
    """Post-deployment operations for a deployed site."""
    load_dotenv()
    config = EnvConfigProvider().load()
    configure_logging(log_level or config.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--request-id", "request_id", default=None, help="Correlation id, generated when omitted")
@click.pass_context
def run(ctx: click.Context, request_id: str):
    """Run scripts, sync function triggers and request auto-swap."""
    orchestrator = _build(ctx)
    _execute(orchestrator.run(request_id or str(uuid.uuid4())))


@cli.command("sync-triggers")
@click.option("--request-id", "request_id", default=None)
@click.option("--functions-path", "functions_path", default=None, type=click.Path(file_okay=False))
@click.pass_context
def sync_triggers(ctx: click.Context, request_id: str, functions_path: str):
    """Sync function triggers (and logicapp.json) only."""
    orchestrator = _build(ctx)
    _execute(orchestrator.sync_function_triggers(request_id or str(uuid.uuid4()), functions_path=functions_path))


@cli.command()
@click.option("--request-id", "request_id", default=None)
@click.pass_context
def restart(ctx: click.Context, request_id: str):
    """Request a restart of the main site."""
    orchestrator = _build(ctx)
    _execute(orchestrator.restart_main_site(request_id or str(uuid.uuid4())))


@cli.command("autoswap-status")
@click.pass_context
def autoswap_status(ctx: click.Context):
    """Print whether auto-swap is enabled and ongoing."""
    orchestrator = _build(ctx)
    click.echo(f"enabled={orchestrator.is_auto_swap_enabled()} ongoing={orchestrator.is_auto_swap_ongoing()}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
