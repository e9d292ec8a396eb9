"""Expiry reaper — periodically removes expired grants."""

from __future__ import annotations

import logging
import threading

from captivegate.errors import RuleInstallError
from captivegate.session.models import Grant
from captivegate.session.store import SessionStore

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Sweeps the session store on a fixed interval.

    Removal goes through the store, whose listeners retract the matching
    allow rules. A rule failure is logged and left for the synchronizer's
    next reconcile; the grant itself is already gone, so the packet path
    stops treating the client as admitted either way.
    """

    def __init__(self, store: SessionStore, interval: float = 5.0) -> None:
        self._store = store
        self._interval = interval
        self._stop_event = threading.Event()

    def sweep(self) -> list[Grant]:
        """Purge expired grants once.

        Returns the grants removed, or an empty list when a rule retraction
        failed (the grants are removed from the store regardless).
        """
        try:
            removed = self._store.purge_expired()
        except RuleInstallError as e:
            logger.error("Expired grants removed but rule retraction failed: %s", e)
            return []
        if removed:
            logger.info("Reaped %d expired grant(s)", len(removed))
        return removed

    def run(self) -> None:
        """Blocking sweep loop until stop()."""
        while not self._stop_event.wait(timeout=self._interval):
            self.sweep()

    def stop(self) -> None:
        self._stop_event.set()
