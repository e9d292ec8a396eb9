"""Rule table evaluator — classifies LAN packets against the installed rules.

First-match-wins over the rules in precedence order. Mirrors what the
firewall does with the same table, which makes precedence testable without
a kernel.
"""

from __future__ import annotations

from dataclasses import dataclass

from captivegate.rules.models import Decision, Packet, Rule, RuleKind, sort_rules

_DNS_PORT = 53
_HTTP_PORT = 80
_HTTPS_PORT = 443


@dataclass(frozen=True)
class Verdict:
    """Result of classifying one packet."""

    decision: Decision
    matched_rule: Rule | None
    is_default: bool


class RuleTable:
    """An ordered, immutable view of a rule set."""

    def __init__(self, rules: list[Rule]) -> None:
        self.rules = tuple(sort_rules(list(rules)))

    def classify(self, packet: Packet) -> Verdict:
        """Return the verdict of the first matching rule, else drop."""
        for rule in self.rules:
            decision = _match(rule, packet)
            if decision is not None:
                return Verdict(decision=decision, matched_rule=rule, is_default=False)
        return Verdict(decision=Decision.DROP, matched_rule=None, is_default=True)


def _match(rule: Rule, packet: Packet) -> Decision | None:
    kind = rule.kind
    if kind == RuleKind.ALLOW_CLIENT:
        return Decision.PASS if packet.src == rule.client else None
    if kind == RuleKind.REDIRECT_DNS_UDP:
        if packet.protocol == "udp" and packet.dport == _DNS_PORT:
            return Decision.REDIRECT_DNS
        return None
    if kind == RuleKind.REDIRECT_DNS_TCP:
        if packet.protocol == "tcp" and packet.dport == _DNS_PORT:
            return Decision.REDIRECT_DNS
        return None
    if kind == RuleKind.REDIRECT_HTTP:
        if packet.protocol == "tcp" and packet.dport == _HTTP_PORT:
            return Decision.REDIRECT_PORTAL
        return None
    if kind == RuleKind.REDIRECT_HTTPS:
        if packet.protocol == "tcp" and packet.dport == _HTTPS_PORT:
            return Decision.REDIRECT_PORTAL
        return None
    if kind == RuleKind.FORWARD_UPLINK:
        return Decision.FORWARD
    if kind == RuleKind.DROP_LAN:
        return Decision.DROP
    # Return-path and postrouting entries never match a new inbound packet
    return None
