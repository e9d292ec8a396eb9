"""CLI command: captivegate serve — run the gateway."""

from __future__ import annotations

import asyncio

import click
import uvicorn
from rich.console import Console

from captivegate.config import GatewayConfig
from captivegate.errors import RuleInstallError
from captivegate.gateway import Gateway

console = Console(stderr=True)


@click.command()
@click.option(
    "--dry-run",
    is_flag=True,
    help="Simulate the firewall in memory instead of calling iptables.",
)
@click.option("--no-dns", is_flag=True, help="Do not serve DNS interception.")
@click.option(
    "--admin-port",
    type=int,
    default=None,
    help="Port for the operator API on 127.0.0.1 (default: 8471).",
)
@click.option("--teardown/--keep-rules", default=True, help="Remove managed rules on exit.")
@click.pass_context
def serve(
    ctx: click.Context,
    dry_run: bool,
    no_dns: bool,
    admin_port: int | None,
    teardown: bool,
) -> None:
    """Start DNS interception, the portal, and the operator API."""
    from captivegate.cli import resolve_policy

    config = GatewayConfig.load()
    config.verbose = ctx.obj.get("verbose", False)
    if admin_port is not None:
        config.admin_port = admin_port
    policy = resolve_policy(ctx, config)

    gateway = Gateway(policy, config, dry_run=dry_run)
    try:
        gateway.start(serve_dns=not no_dns)
    except (RuleInstallError, OSError) as e:
        console.print(f"[red]Gateway failed to start: {e}[/red]")
        gateway.stop(teardown=teardown)
        raise SystemExit(1)

    console.print(
        f"[bold]captivegate[/bold] policy [cyan]{policy.name}[/cyan] "
        f"portal on [cyan]http://{policy.gateway_ip}:{policy.portal_port}[/cyan]"
    )
    console.print(
        f"  Operator API on [cyan]http://{config.admin_host}:{config.admin_port}[/cyan]"
    )
    if dry_run:
        console.print("  [yellow]Dry run: firewall changes are simulated[/yellow]")
    console.print()

    from captivegate.web.app import create_admin_app, create_portal_app

    async def _run() -> None:
        log_level = "debug" if config.verbose else "info"
        servers = [
            uvicorn.Server(
                uvicorn.Config(
                    create_portal_app(gateway),
                    host=policy.gateway_ip,
                    port=policy.portal_port,
                    log_level=log_level,
                )
            ),
            uvicorn.Server(
                uvicorn.Config(
                    create_admin_app(gateway),
                    host=config.admin_host,
                    port=config.admin_port,
                    log_level=log_level,
                )
            ),
        ]
        await asyncio.gather(*(srv.serve() for srv in servers))

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    finally:
        gateway.stop(teardown=teardown)
        console.print("[dim]Gateway stopped[/dim]")
