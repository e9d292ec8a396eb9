"""CLI command: captivegate dnsmasq-config — emit the DHCP server config."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from captivegate.config import GatewayConfig
from captivegate.dhcp import render_dnsmasq_config

console = Console(stderr=True)


@click.command("dnsmasq-config")
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=None,
    help="Write the config to this file instead of stdout.",
)
@click.option("--leasefile", type=click.Path(), default=None, help="dnsmasq lease file path.")
@click.pass_context
def dnsmasq_config(ctx: click.Context, output: str | None, leasefile: str | None) -> None:
    """Render a DHCP-only dnsmasq config for the LAN interface."""
    from captivegate.cli import resolve_policy

    policy = resolve_policy(ctx, GatewayConfig.load())
    text = render_dnsmasq_config(policy, leasefile=leasefile)

    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(f"[green]dnsmasq config written to {output}[/green]")
    else:
        click.echo(text, nl=False)
