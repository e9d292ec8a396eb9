"""Uplink link-state probing."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

import psutil

logger = logging.getLogger(__name__)

_SYS_NET = Path("/sys/class/net")


@runtime_checkable
class LinkProbe(Protocol):
    """Protocol for link-state queries."""

    def is_link_up(self, interface: str) -> bool:
        """Whether the interface exists, is administratively up and has carrier."""
        ...


class SystemLinkProbe:
    """Checks interface flags via psutil, then the kernel carrier flag.

    An unplugged cable leaves the interface administratively up, so the
    sysfs carrier file is consulted when present.
    """

    def __init__(self, sys_net: Path = _SYS_NET) -> None:
        self._sys_net = sys_net

    def is_link_up(self, interface: str) -> bool:
        stats = psutil.net_if_stats().get(interface)
        if stats is None:
            logger.debug("Interface %s not present", interface)
            return False
        if not stats.isup:
            return False

        carrier = self._sys_net / interface / "carrier"
        try:
            return carrier.read_text().strip() == "1"
        except FileNotFoundError:
            return True
        except OSError:
            # Reading carrier on a down interface raises EINVAL
            return False


class StaticLinkProbe:
    """Reports a fixed, settable link state. For dry runs and tests."""

    def __init__(self, up: bool = True) -> None:
        self.up = up

    def is_link_up(self, interface: str) -> bool:
        return self.up
