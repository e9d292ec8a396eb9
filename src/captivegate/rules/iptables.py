"""iptables backend — renders abstract rules into tagged iptables entries.

Every managed entry carries ``-m comment --comment captivegate:<rule id>`` so
``list_active`` can recover the abstract rule set from the live tables and
leave foreign rules alone.
"""

from __future__ import annotations

import logging
import shlex
import subprocess

from captivegate.errors import RuleInstallError
from captivegate.policy.models import RedirectPolicy
from captivegate.rules.models import Rule, RuleKind, sort_rules

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "captivegate:"

_TABLES = ("nat", "filter")


class IptablesBackend:
    """Drives iptables via subprocess with a bounded timeout per call."""

    def __init__(
        self,
        policy: RedirectPolicy,
        timeout: float = 5.0,
        binary: str = "iptables",
        dns_port: int = 53,
    ) -> None:
        self._policy = policy
        self._timeout = timeout
        self._dns_port = dns_port
        self._binary = binary

    def install(self, rule: Rule) -> None:
        table, chain, spec, insert = self.render(rule)
        op = ["-I", chain, "1"] if insert else ["-A", chain]
        self._run(rule, ["-t", table, *op, *spec])
        logger.debug("Installed %s", rule.rule_id)

    def remove(self, rule: Rule) -> None:
        table, chain, spec, _ = self.render(rule)
        self._run(rule, ["-t", table, "-D", chain, *spec])
        logger.debug("Removed %s", rule.rule_id)

    def list_active(self) -> list[Rule]:
        rules: list[Rule] = []
        for table in _TABLES:
            output = self._run(None, ["-t", table, "-S"])
            rules.extend(parse_rules(output))
        return sort_rules(rules)

    def enable_forwarding(self) -> bool:
        """Turn on IPv4 forwarding so admitted traffic can reach the uplink."""
        try:
            subprocess.run(
                ["sysctl", "-w", "net.ipv4.ip_forward=1"],
                check=True,
                capture_output=True,
                timeout=self._timeout,
            )
            logger.info("IP forwarding enabled")
            return True
        except (
            subprocess.CalledProcessError,
            subprocess.TimeoutExpired,
            FileNotFoundError,
        ) as e:
            logger.error("Failed to enable IP forwarding: %s", e)
            return False

    def render(self, rule: Rule) -> tuple[str, str, list[str], bool]:
        """Return (table, chain, match+target args, insert-at-top) for a rule."""
        p = self._policy
        lan = p.lan_interface
        uplink = p.uplink_interface
        portal = f"{p.gateway_ip}:{p.portal_port}"
        resolver = f"{p.gateway_ip}:{self._dns_port}"
        kind = rule.kind

        if kind == RuleKind.ALLOW_CLIENT:
            table, chain, insert = "nat", "PREROUTING", True
            spec = ["-i", lan, "-s", rule.client, "-j", "RETURN"]
        elif kind == RuleKind.REDIRECT_DNS_UDP:
            table, chain, insert = "nat", "PREROUTING", False
            spec = ["-i", lan, "-p", "udp", "--dport", "53",
                    "-j", "DNAT", "--to-destination", resolver]
        elif kind == RuleKind.REDIRECT_DNS_TCP:
            table, chain, insert = "nat", "PREROUTING", False
            spec = ["-i", lan, "-p", "tcp", "--dport", "53",
                    "-j", "DNAT", "--to-destination", resolver]
        elif kind == RuleKind.REDIRECT_HTTP:
            table, chain, insert = "nat", "PREROUTING", False
            spec = ["-i", lan, "-p", "tcp", "--dport", "80",
                    "-j", "DNAT", "--to-destination", portal]
        elif kind == RuleKind.REDIRECT_HTTPS:
            table, chain, insert = "nat", "PREROUTING", False
            spec = ["-i", lan, "-p", "tcp", "--dport", "443",
                    "-j", "DNAT", "--to-destination", portal]
        elif kind == RuleKind.FORWARD_ESTABLISHED:
            table, chain, insert = "filter", "FORWARD", True
            spec = ["-i", uplink, "-o", lan, "-m", "conntrack",
                    "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT"]
        elif kind == RuleKind.FORWARD_UPLINK:
            table, chain, insert = "filter", "FORWARD", True
            spec = ["-i", lan, "-o", uplink, "-j", "ACCEPT"]
        elif kind == RuleKind.MASQUERADE:
            table, chain, insert = "nat", "POSTROUTING", False
            spec = ["-o", uplink, "-j", "MASQUERADE"]
        elif kind == RuleKind.DROP_LAN:
            table, chain, insert = "filter", "FORWARD", False
            spec = ["-i", lan, "-j", "DROP"]
        else:
            raise ValueError(f"Unhandled rule kind: {kind}")

        spec = spec + ["-m", "comment", "--comment", COMMENT_PREFIX + rule.rule_id]
        return table, chain, spec, insert

    def _run(self, rule: Rule | None, args: list[str]) -> str:
        cmd = [self._binary, "-w", str(int(self._timeout)), *args]
        rule_id = rule.rule_id if rule is not None else ""
        try:
            result = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise RuleInstallError(
                f"{' '.join(cmd)} failed: {stderr or e.returncode}", rule_id
            ) from e
        except subprocess.TimeoutExpired as e:
            raise RuleInstallError(f"{' '.join(cmd)} timed out", rule_id) from e
        except FileNotFoundError as e:
            raise RuleInstallError(f"{self._binary} not found", rule_id) from e
        return result.stdout


def parse_rules(output: str) -> list[Rule]:
    """Extract managed rules from ``iptables -S`` output, in listed order."""
    rules: list[Rule] = []
    for line in output.splitlines():
        if "--comment" not in line:
            continue
        try:
            parts = shlex.split(line)
        except ValueError:
            continue
        try:
            comment = parts[parts.index("--comment") + 1]
        except (ValueError, IndexError):
            continue
        if not comment.startswith(COMMENT_PREFIX):
            continue
        try:
            rules.append(Rule.from_id(comment[len(COMMENT_PREFIX) :]))
        except ValueError:
            logger.warning("Ignoring unrecognised managed rule: %s", line)
    return rules
