"""CLI command: captivegate rules — show the firewall rules a policy produces."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from captivegate.config import GatewayConfig
from captivegate.errors import RuleInstallError
from captivegate.link import SystemLinkProbe
from captivegate.rules.iptables import IptablesBackend
from captivegate.rules.models import Rule
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.store import SessionStore

console = Console(stderr=True)


@click.command()
@click.option("--live", is_flag=True, help="List the rules currently installed instead.")
@click.option(
    "--client",
    "clients",
    multiple=True,
    help="Include an allow rule for this client address (repeatable).",
)
@click.pass_context
def rules(ctx: click.Context, live: bool, clients: tuple[str, ...]) -> None:
    """Print the rule set for the policy, in precedence order."""
    from captivegate.cli import resolve_policy

    config = GatewayConfig.load()
    policy = resolve_policy(ctx, config)
    backend = IptablesBackend(
        policy, timeout=config.rule_timeout, dns_port=config.dns_port
    )

    if live:
        try:
            rule_list = backend.list_active()
        except RuleInstallError as e:
            console.print(f"[red]Could not read firewall state: {e}[/red]")
            raise SystemExit(1)
        title = "Installed rules"
    else:
        synchronizer = RuleSynchronizer(SessionStore(), backend, SystemLinkProbe(), policy)
        uplink_up = synchronizer.probe_uplink()
        synchronizer.close()
        rule_list = synchronizer.desired_rules(set(clients), uplink_up)
        title = f"Rules for '{policy.name}' (uplink {'up' if uplink_up else 'down'})"

    if not rule_list:
        console.print("[yellow]No managed rules.[/yellow]")
        return

    console.print(_rule_table(title, backend, rule_list))


def _rule_table(title: str, backend: IptablesBackend, rule_list: list[Rule]) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Prio", justify="right")
    table.add_column("Rule", style="cyan", no_wrap=True)
    table.add_column("Table")
    table.add_column("Chain")
    table.add_column("Spec", max_width=80)

    for rule in rule_list:
        tbl, chain, spec, _ = backend.render(rule)
        table.add_row(str(rule.priority), rule.rule_id, tbl, chain, " ".join(spec))
    return table
