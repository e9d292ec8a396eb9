"""Hijacked-domain matching."""

from __future__ import annotations

import enum


class HijackKind(enum.Enum):
    """Why a name resolves to the gateway."""

    CONNECTIVITY = "connectivity"  # OS portal-detection probe, pre-admission only
    LANDING = "landing"  # operator portal name, always


class HijackTable:
    """Suffix-matches query names against the configured domain sets.

    A configured domain covers itself and every subdomain, the same as
    dnsmasq's ``address=/domain/ip``.
    """

    def __init__(
        self,
        connectivity: tuple[str, ...] | list[str] = (),
        landing: tuple[str, ...] | list[str] = (),
    ) -> None:
        self._domains: dict[str, HijackKind] = {}
        for domain in connectivity:
            self._domains[_normalize(domain)] = HijackKind.CONNECTIVITY
        # Landing wins when a name is listed in both
        for domain in landing:
            self._domains[_normalize(domain)] = HijackKind.LANDING

    def match(self, name: str) -> HijackKind | None:
        labels = _normalize(name).split(".")
        for i in range(len(labels)):
            kind = self._domains.get(".".join(labels[i:]))
            if kind is not None:
                return kind
        return None

    def __len__(self) -> int:
        return len(self._domains)


def _normalize(name: str) -> str:
    return name.strip().lower().rstrip(".")
