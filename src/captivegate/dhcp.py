"""dnsmasq configuration for the DHCP side of the access network.

dnsmasq only hands out leases here. DNS is served by captivegate itself, so
the rendered config disables dnsmasq's resolver (``port=0``) and points
clients at the gateway for both routing and name resolution.
"""

from __future__ import annotations

from pathlib import Path

from captivegate.policy.models import RedirectPolicy


def render_dnsmasq_config(
    policy: RedirectPolicy,
    leasefile: str | Path | None = None,
) -> str:
    dhcp = policy.dhcp
    lines = [
        f"# Generated by captivegate for policy '{policy.name}'",
        f"interface={policy.lan_interface}",
        "bind-interfaces",
        "port=0",
        "",
        f"dhcp-range={dhcp.start},{dhcp.end},{dhcp.netmask},{dhcp.lease_time}",
        f"dhcp-option=option:router,{policy.gateway_ip}",
        f"dhcp-option=option:dns-server,{policy.gateway_ip}",
        "dhcp-authoritative",
    ]
    if leasefile is not None:
        lines.append(f"dhcp-leasefile={leasefile}")
    lines += ["", "log-dhcp", ""]
    return "\n".join(lines)
