"""Redirect policy models — immutable dataclasses built once at startup."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

# Hosts the major OS families probe to detect a captive portal.
DEFAULT_PROBE_DOMAINS: tuple[str, ...] = (
    "captive.apple.com",
    "connectivitycheck.gstatic.com",
    "connectivitycheck.android.com",
    "clients3.google.com",
    "msftconnecttest.com",
    "msftncsi.com",
    "detectportal.firefox.com",
    "nmcheck.gnome.org",
    "neverssl.com",
)

DEFAULT_LANDING_DOMAINS: tuple[str, ...] = ("portal.local",)


class ValidatorKind(enum.Enum):
    """Which credential check backs the admission form."""

    ACCEPT = "accept"
    STATIC = "static"


@dataclass(frozen=True)
class ValidatorSpec:
    """Credential-check configuration.

    ``users`` maps a username to the hex sha256 digest of its password.
    """

    kind: ValidatorKind = ValidatorKind.ACCEPT
    users: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class DhcpRange:
    """Lease range handed to the DHCP collaborator."""

    start: str = "10.0.0.10"
    end: str = "10.0.0.100"
    netmask: str = "255.255.255.0"
    lease_time: str = "12h"


@dataclass(frozen=True)
class RedirectPolicy:
    """Everything the gateway needs to know about the managed segment."""

    gateway_ip: str = "10.0.0.1"
    portal_port: int = 80
    lan_interface: str = "at0"
    uplink_interface: str = "eth0"
    dhcp: DhcpRange = field(default_factory=DhcpRange)
    hijacked_domains: tuple[str, ...] = DEFAULT_PROBE_DOMAINS
    landing_domains: tuple[str, ...] = DEFAULT_LANDING_DOMAINS
    # None: the host resolvers from resolv.conf. Empty: answer NXDOMAIN
    upstream_dns: tuple[str, ...] | None = None
    grant_ttl: float = 300.0
    session_ttl: float = 3600.0
    sliding_ttl: bool = False
    hijack_after_admission: bool = False
    validator: ValidatorSpec = field(default_factory=ValidatorSpec)
    name: str = "default"
