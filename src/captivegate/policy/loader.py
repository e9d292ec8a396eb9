"""Load RedirectPolicy objects from YAML files."""

from __future__ import annotations

import ipaddress
from pathlib import Path

import yaml

from captivegate.policy.models import (
    DEFAULT_LANDING_DOMAINS,
    DEFAULT_PROBE_DOMAINS,
    DhcpRange,
    RedirectPolicy,
    ValidatorKind,
    ValidatorSpec,
)

_PRESET_PREFIX = "preset:"

_PRESETS: dict[str, tuple[str, ...]] = {
    "connectivity": DEFAULT_PROBE_DOMAINS,
}


def load_policy(path: str | Path) -> RedirectPolicy:
    """Load a policy from a YAML file path."""
    text = Path(path).read_text(encoding="utf-8")
    return load_policy_from_string(text)


def load_policy_from_string(text: str) -> RedirectPolicy:
    """Parse a YAML string into a RedirectPolicy."""
    data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Policy YAML must be a mapping")
    return _build_policy(data)


def _build_policy(data: dict) -> RedirectPolicy:
    gateway_ip = _parse_address(data.get("gateway", "10.0.0.1"), "gateway")

    portal_port = int(data.get("portal_port", 80))
    if not 0 < portal_port < 65536:
        raise ValueError(f"portal_port out of range: {portal_port}")

    interfaces = data.get("interfaces", {}) or {}
    dns = data.get("dns", {}) or {}
    ttl = data.get("ttl", {}) or {}

    grant_ttl = float(ttl.get("grant", 300))
    session_ttl = float(ttl.get("session", 3600))
    if grant_ttl <= 0 or session_ttl <= 0:
        raise ValueError("TTL values must be positive")

    hijack_raw = dns.get("hijack")
    hijacked = (
        _expand_domains(hijack_raw)
        if hijack_raw is not None
        else DEFAULT_PROBE_DOMAINS
    )
    landing_raw = dns.get("landing")
    landing = (
        _expand_domains(landing_raw)
        if landing_raw is not None
        else DEFAULT_LANDING_DOMAINS
    )

    upstream_raw = dns.get("upstream")
    if isinstance(upstream_raw, str):
        upstream_raw = [upstream_raw]
    upstream = (
        tuple(_parse_address(addr, "dns.upstream") for addr in upstream_raw)
        if upstream_raw is not None
        else None
    )

    return RedirectPolicy(
        name=data.get("name", "unnamed"),
        gateway_ip=gateway_ip,
        portal_port=portal_port,
        lan_interface=interfaces.get("lan", "at0"),
        uplink_interface=interfaces.get("uplink", "eth0"),
        dhcp=_parse_dhcp(data.get("dhcp", {}) or {}),
        hijacked_domains=hijacked,
        landing_domains=landing,
        upstream_dns=upstream,
        grant_ttl=grant_ttl,
        session_ttl=session_ttl,
        sliding_ttl=bool(ttl.get("sliding", False)),
        hijack_after_admission=bool(dns.get("hijack_after_admission", False)),
        validator=_parse_validator(data.get("admission", {}) or {}),
    )


def _parse_address(value: object, field_name: str) -> str:
    try:
        return str(ipaddress.ip_address(str(value)))
    except ValueError:
        raise ValueError(f"{field_name}: not an IP address: {value!r}") from None


def _expand_domains(raw: list | str) -> tuple[str, ...]:
    if isinstance(raw, str):
        raw = [raw]
    domains: list[str] = []
    for entry in raw:
        entry = str(entry).strip().lower().rstrip(".")
        if entry.startswith(_PRESET_PREFIX):
            preset = entry[len(_PRESET_PREFIX) :]
            if preset not in _PRESETS:
                raise ValueError(f"Unknown domain preset: {preset}")
            domains.extend(_PRESETS[preset])
        elif entry:
            domains.append(entry)
    # Keep first occurrence order
    return tuple(dict.fromkeys(domains))


def _parse_dhcp(data: dict) -> DhcpRange:
    defaults = DhcpRange()
    return DhcpRange(
        start=_parse_address(data.get("start", defaults.start), "dhcp.start"),
        end=_parse_address(data.get("end", defaults.end), "dhcp.end"),
        netmask=_parse_address(data.get("netmask", defaults.netmask), "dhcp.netmask"),
        lease_time=str(data.get("lease_time", defaults.lease_time)),
    )


def _parse_validator(data: dict) -> ValidatorSpec:
    kind = ValidatorKind(data.get("validator", "accept"))
    users_raw = data.get("users", {}) or {}
    if not isinstance(users_raw, dict):
        raise ValueError("admission.users must be a mapping")
    if kind == ValidatorKind.STATIC and not users_raw:
        raise ValueError("Static validator requires at least one user")
    users = tuple(
        (str(name), str(digest).lower()) for name, digest in users_raw.items()
    )
    return ValidatorSpec(kind=kind, users=users)
