"""Session store — concurrent, TTL-indexed registry of admitted clients.

Copy-on-write: writers serialise on a lock, build a new mapping and publish
it with a single reference assignment. Readers on the packet path never take
the lock; they read whichever immutable mapping is current. Expiry is
enforced at read time, so a grant past its deadline is never reported as
admitted even before the reaper removes it.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType

from captivegate.session.models import ChangeKind, Grant, StoreChange

logger = logging.getLogger(__name__)

Listener = Callable[[StoreChange], None]


def normalize_client(client: str) -> str:
    """Return the canonical text form of a client address.

    Raises ValueError for anything that is not an IP address.
    """
    return str(ipaddress.ip_address(client.strip()))


class SessionStore:
    """Owns the full set of live grants."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._grants: Mapping[str, Grant] = MappingProxyType({})
        self._write_lock = threading.Lock()
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Register a callback invoked after every committed change."""
        self._listeners.append(listener)

    def now(self) -> float:
        return self._clock()

    # --- Reads (lock-free) ---

    def is_admitted(self, client: str) -> bool:
        """Point-in-time membership check, safe for the packet path."""
        grant = self._grants.get(client)
        if grant is None:
            try:
                grant = self._grants.get(normalize_client(client))
            except ValueError:
                return False
            if grant is None:
                return False
        return not grant.is_expired(self._clock())

    def get(self, client: str) -> Grant | None:
        """Return the live grant for a client, or None."""
        try:
            grant = self._grants.get(normalize_client(client))
        except ValueError:
            return None
        if grant is None or grant.is_expired(self._clock()):
            return None
        return grant

    def snapshot(self) -> frozenset[str]:
        """Return the set of clients currently admitted."""
        grants = self._grants
        now = self._clock()
        return frozenset(c for c, g in grants.items() if not g.is_expired(now))

    def grants(self) -> list[Grant]:
        """Return live grants ordered by expiry."""
        grants = self._grants
        now = self._clock()
        live = [g for g in grants.values() if not g.is_expired(now)]
        return sorted(live, key=lambda g: g.expires_at)

    def expired(self) -> list[Grant]:
        """Return grants past their deadline that have not been purged yet."""
        grants = self._grants
        now = self._clock()
        return [g for g in grants.values() if g.is_expired(now)]

    def __len__(self) -> int:
        return len(self.snapshot())

    # --- Writes (serialised) ---

    def admit(self, client: str, ttl: float) -> Grant:
        """Insert or replace the grant for ``client``. Never rejects."""
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        client = normalize_client(client)
        with self._write_lock:
            now = self._clock()
            grant = Grant(client=client, granted_at=now, expires_at=now + ttl)
            self._publish_with(client, grant)
        logger.info("Admitted %s for %.0fs", client, ttl)
        self._notify([StoreChange(ChangeKind.ADMITTED, client)])
        return grant

    def touch(self, client: str) -> Grant | None:
        """Slide a live grant forward by the TTL it was granted with."""
        grant = self._renew(client, ttl=None)
        if grant is not None:
            logger.debug("Refreshed %s until %.0f", grant.client, grant.expires_at)
        return grant

    def extend(self, client: str, ttl: float) -> Grant | None:
        """Give a live grant a new deadline ``ttl`` seconds from now."""
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        grant = self._renew(client, ttl=ttl)
        if grant is not None:
            logger.info("Extended %s for %.0fs", grant.client, ttl)
        return grant

    def revoke(self, client: str) -> bool:
        """Remove the grant for ``client``. Returns whether one existed."""
        try:
            client = normalize_client(client)
        except ValueError:
            return False
        with self._write_lock:
            if client not in self._grants:
                return False
            self._publish_with(client, None)
        logger.info("Revoked %s", client)
        self._notify([StoreChange(ChangeKind.REVOKED, client)])
        return True

    def purge_expired(self) -> list[Grant]:
        """Remove every grant that is still expired at commit time."""
        with self._write_lock:
            now = self._clock()
            current = self._grants
            removed = [g for g in current.values() if g.is_expired(now)]
            if not removed:
                return []
            kept = {c: g for c, g in current.items() if not g.is_expired(now)}
            self._grants = MappingProxyType(kept)
        for grant in removed:
            logger.info("Expired %s", grant.client)
        self._notify([StoreChange(ChangeKind.EXPIRED, g.client) for g in removed])
        return removed

    # --- Internals ---

    def _renew(self, client: str, ttl: float | None) -> Grant | None:
        try:
            client = normalize_client(client)
        except ValueError:
            return None
        with self._write_lock:
            current = self._grants.get(client)
            now = self._clock()
            if current is None or current.is_expired(now):
                return None
            duration = current.ttl if ttl is None else ttl
            grant = Grant(client=client, granted_at=now, expires_at=now + duration)
            self._publish_with(client, grant)
        self._notify([StoreChange(ChangeKind.REFRESHED, client)])
        return grant

    def _publish_with(self, client: str, grant: Grant | None) -> None:
        # Caller holds _write_lock
        grants = dict(self._grants)
        if grant is None:
            grants.pop(client, None)
        else:
            grants[client] = grant
        self._grants = MappingProxyType(grants)

    def _notify(self, changes: list[StoreChange]) -> None:
        """Deliver every change to every listener, then re-raise the first error."""
        first_error: BaseException | None = None
        for change in changes:
            for listener in self._listeners:
                try:
                    listener(change)
                except Exception as exc:
                    logger.error(
                        "Store listener failed on %s %s: %s",
                        change.kind.value,
                        change.client,
                        exc,
                    )
                    if first_error is None:
                        first_error = exc
        if first_error is not None:
            raise first_error
