"""Rule data models — the abstract traffic-control entries the synchronizer drives."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class RuleKind(enum.Enum):
    """Every rule the gateway ever installs."""

    ALLOW_CLIENT = "allow"
    REDIRECT_DNS_UDP = "redirect-dns-udp"
    REDIRECT_DNS_TCP = "redirect-dns-tcp"
    REDIRECT_HTTP = "redirect-http"
    REDIRECT_HTTPS = "redirect-https"
    FORWARD_ESTABLISHED = "forward-established"
    FORWARD_UPLINK = "forward-uplink"
    MASQUERADE = "masquerade"
    DROP_LAN = "drop-lan"


# Lower value = evaluated first. Admitted clients must be matched before any redirect.
_PRIORITY: dict[RuleKind, int] = {
    RuleKind.ALLOW_CLIENT: 0,
    RuleKind.REDIRECT_DNS_UDP: 10,
    RuleKind.REDIRECT_DNS_TCP: 10,
    RuleKind.REDIRECT_HTTP: 20,
    RuleKind.REDIRECT_HTTPS: 30,
    RuleKind.FORWARD_ESTABLISHED: 40,
    RuleKind.FORWARD_UPLINK: 40,
    RuleKind.MASQUERADE: 40,
    RuleKind.DROP_LAN: 90,
}

REDIRECT_KINDS = frozenset(
    {
        RuleKind.REDIRECT_DNS_UDP,
        RuleKind.REDIRECT_DNS_TCP,
        RuleKind.REDIRECT_HTTP,
        RuleKind.REDIRECT_HTTPS,
    }
)

UPLINK_KINDS = frozenset(
    {
        RuleKind.FORWARD_ESTABLISHED,
        RuleKind.FORWARD_UPLINK,
        RuleKind.MASQUERADE,
    }
)


@dataclass(frozen=True)
class Rule:
    """One traffic-control entry. Only ALLOW_CLIENT rules carry a client."""

    kind: RuleKind
    client: str = ""

    @property
    def priority(self) -> int:
        return _PRIORITY[self.kind]

    @property
    def rule_id(self) -> str:
        """Stable identifier, also used as the firewall comment tag."""
        if self.kind == RuleKind.ALLOW_CLIENT:
            return f"{self.kind.value}:{self.client}"
        return self.kind.value

    @property
    def is_allow(self) -> bool:
        return self.kind == RuleKind.ALLOW_CLIENT

    @property
    def is_redirect(self) -> bool:
        return self.kind in REDIRECT_KINDS

    @property
    def is_uplink(self) -> bool:
        return self.kind in UPLINK_KINDS

    @classmethod
    def from_id(cls, rule_id: str) -> Rule:
        """Inverse of ``rule_id``. Raises ValueError on unknown ids."""
        kind_value, _, client = rule_id.partition(":")
        kind = RuleKind(kind_value)
        if kind == RuleKind.ALLOW_CLIENT and not client:
            raise ValueError(f"Allow rule id without client: {rule_id}")
        return cls(kind=kind, client=client)

    @classmethod
    def allow(cls, client: str) -> Rule:
        return cls(kind=RuleKind.ALLOW_CLIENT, client=client)


def sort_rules(rules: list[Rule]) -> list[Rule]:
    """Order rules by evaluation precedence (stable within a priority)."""
    return sorted(rules, key=lambda r: r.priority)


class Decision(enum.Enum):
    """What the rule table does with a packet."""

    PASS = "pass"
    REDIRECT_DNS = "redirect-dns"
    REDIRECT_PORTAL = "redirect-portal"
    FORWARD = "forward"
    DROP = "drop"


@dataclass(frozen=True)
class Packet:
    """The fields of an inbound LAN packet the rule table looks at."""

    src: str
    dport: int
    protocol: str = "tcp"
