"""CLI command: captivegate teardown — remove every managed firewall rule."""

from __future__ import annotations

import click
from rich.console import Console

from captivegate.config import GatewayConfig
from captivegate.errors import RuleInstallError
from captivegate.link import StaticLinkProbe
from captivegate.rules.iptables import IptablesBackend
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.store import SessionStore

console = Console(stderr=True)


@click.command()
@click.pass_context
def teardown(ctx: click.Context) -> None:
    """Remove all captivegate rules, leaving unrelated rules untouched."""
    from captivegate.cli import resolve_policy

    config = GatewayConfig.load()
    policy = resolve_policy(ctx, config)
    synchronizer = RuleSynchronizer(
        SessionStore(),
        IptablesBackend(policy, timeout=config.rule_timeout, dns_port=config.dns_port),
        StaticLinkProbe(up=False),
        policy,
        retries=config.rule_retries,
        backoff=config.rule_backoff,
    )
    try:
        removed = synchronizer.teardown()
    except RuleInstallError as e:
        console.print(f"[red]Teardown failed: {e}[/red]")
        raise SystemExit(1)
    finally:
        synchronizer.close()

    console.print(f"[green]Removed {removed} rule(s)[/green]")
