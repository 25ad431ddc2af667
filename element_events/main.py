"""
Command-line interface for element-events.
"""

import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import typer

from .application.startup import ElementEventSystem
from .core.domain.elements import ElementKind, ElementLifecycleEvent
from .core.domain.events import ElementEvent
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .infrastructure.transport.registry import MemoryTransportFactory, TransportRegistry

cli = typer.Typer(
    name="element-events",
    help="Element lifecycle, event dispatch and transport toolkit"
)


def _load(config_file: Optional[str], log_level: Optional[str]) -> ApplicationConfig:
    config = ConfigLoader().load_config(config_file)
    if log_level:
        config.logging.level = log_level.upper()
    setup_logging(config.logging)
    return config


@cli.command()
def info(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level"
    )
) -> None:
    """Print the effective configuration."""
    try:
        config = _load(config_file, log_level)
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    typer.echo(json.dumps(config.to_dict(), indent=2, default=str))


@cli.command()
def init_config(
    output: str = typer.Option(
        "element-events.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""
    try:
        ConfigLoader().save_config(ApplicationConfig(), output, format)
        typer.echo(f"Default configuration saved to {output}")
    except Exception as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def demo(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    updates: int = typer.Option(
        3, "--updates", "-n", help="Number of content updates to send"
    ),
    log_level: Optional[str] = typer.Option(
        "WARNING", "--log-level", help="Logging level"
    )
) -> None:
    """Run an element through its lifecycle and across an in-memory transport."""
    try:
        config = _load(config_file, log_level)
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    config.transport.enabled = True
    if not config.transport.url.startswith(tuple(f"{s}://" for s in MemoryTransportFactory.SCHEMES)):
        config.transport.url = "memory://demo"

    try:
        report = asyncio.run(run_demo(config, updates))
    except Exception as e:
        typer.echo(f"Demo failed: {e}", err=True)
        sys.exit(1)

    typer.echo(json.dumps(report, indent=2, default=str))


async def run_demo(config: ApplicationConfig, updates: int) -> Dict[str, Any]:
    """
    Drive one element through create, register, activate, update and destroy.

    A second transport on the same hub plays the remote peer and records what
    it receives.
    """
    registry = TransportRegistry()
    registry.register(MemoryTransportFactory())

    lifecycle_events: List[str] = []
    received: List[ElementEvent] = []

    system = ElementEventSystem(config, registry=registry)
    peer = registry.create(config.transport.url)
    if peer is None:
        raise ValueError(f"No transport factory supports {config.transport.url}")

    async with system:
        await peer.connect()
        await peer.subscribe_to_all(received.append)

        lifecycle = system.lifecycle_manager

        def record(event: ElementLifecycleEvent) -> None:
            lifecycle_events.append(event.event_type.value)

        lifecycle.subscribe_to_lifecycle(record)

        element = await lifecycle.create_element("demo-1", ElementKind.MARKDOWN, {"text": "# Hello"})
        await lifecycle.register_element(element)
        await lifecycle.activate_element(element.id)
        for i in range(updates):
            await lifecycle.update_element_content(element.id, {"text": f"# Hello {i + 1}"})
        await system.event_manager.flush()

        content = dict(element.content)
        queue_stats = system.event_manager.get_queue_stats()
        history = len(system.event_manager.get_event_history(element.id))
        transport_stats = system.transport.get_stats() if system.transport else None

        await lifecycle.destroy_element(element.id)
        await peer.destroy()

    return {
        'lifecycle_events': lifecycle_events,
        'final_content': content,
        'history_entries': history,
        'queue': queue_stats,
        'peer_received': len(received),
        'transport': asdict(transport_stats) if transport_stats else None,
    }


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
