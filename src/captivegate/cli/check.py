"""CLI command: captivegate check — validate and summarise a policy."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from captivegate.config import GatewayConfig

console = Console(stderr=True)


@click.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Validate the redirect policy and print what it will enforce."""
    from captivegate.cli import resolve_policy

    config = GatewayConfig.load()
    policy = resolve_policy(ctx, config)

    table = Table(title=f"Policy '{policy.name}'", show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value", style="cyan")

    table.add_row("Gateway", f"{policy.gateway_ip}:{policy.portal_port}")
    table.add_row("LAN / uplink", f"{policy.lan_interface} / {policy.uplink_interface}")
    table.add_row(
        "DHCP range",
        f"{policy.dhcp.start} - {policy.dhcp.end} ({policy.dhcp.lease_time})",
    )
    table.add_row("Hijacked domains", str(len(policy.hijacked_domains)))
    table.add_row("Landing domains", ", ".join(policy.landing_domains) or "-")
    if policy.upstream_dns is None:
        upstream = f"system ({config.resolv_conf})"
    else:
        upstream = ", ".join(policy.upstream_dns) or "none (NXDOMAIN)"
    table.add_row("Upstream DNS", upstream)
    table.add_row("Grant TTL", f"{policy.grant_ttl:.0f}s")
    table.add_row("Sliding TTL", "yes" if policy.sliding_ttl else "no")
    table.add_row("Validator", policy.validator.kind.value)

    console.print(table)
    console.print("[green]Policy OK[/green]")
