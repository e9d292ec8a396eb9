"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging
from pathlib import Path

import click
import yaml

from captivegate import __version__
from captivegate.config import GatewayConfig
from captivegate.policy.loader import load_policy
from captivegate.policy.models import RedirectPolicy


@click.group()
@click.version_option(version=__version__, prog_name="captivegate")
@click.option(
    "--policy",
    "-p",
    type=click.Path(exists=True),
    help="Path to a YAML redirect policy.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, policy: str | None, verbose: bool) -> None:
    """captivegate — captive-portal admission gateway."""
    ctx.ensure_object(dict)
    ctx.obj["policy_path"] = policy
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def resolve_policy(ctx: click.Context, config: GatewayConfig) -> RedirectPolicy:
    """The policy named on the command line, else the configured one, else defaults."""
    path = ctx.obj.get("policy_path") or config.policy_path
    if not path:
        return RedirectPolicy()
    try:
        return load_policy(Path(path))
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Invalid policy {path}: {e}") from e


def _register_commands() -> None:
    from captivegate.cli.check import check  # noqa: F811
    from captivegate.cli.dnsmasq import dnsmasq_config  # noqa: F811
    from captivegate.cli.rules import rules  # noqa: F811
    from captivegate.cli.serve import serve  # noqa: F811
    from captivegate.cli.teardown import teardown  # noqa: F811

    main.add_command(serve)
    main.add_command(rules)
    main.add_command(teardown)
    main.add_command(dnsmasq_config)
    main.add_command(check)


_register_commands()
