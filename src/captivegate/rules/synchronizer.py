"""Rule synchronizer — keeps the live firewall a projection of the session store.

The store is authoritative; the firewall is derived state. Every backend call
goes through a single lock, so the synchronizer is the only writer of
firewall state even though it is driven from several threads (admission
requests via store listeners, the reaper, and its own polling loop).
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TypeVar

from captivegate.errors import RuleInstallError, StoreConsistencyError
from captivegate.link import LinkProbe
from captivegate.policy.models import RedirectPolicy
from captivegate.rules.backend import RuleBackend
from captivegate.rules.models import Rule, RuleKind, sort_rules
from captivegate.session.models import StoreChange
from captivegate.session.store import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BASE_KINDS = (
    RuleKind.REDIRECT_DNS_UDP,
    RuleKind.REDIRECT_DNS_TCP,
    RuleKind.REDIRECT_HTTP,
    RuleKind.REDIRECT_HTTPS,
    RuleKind.DROP_LAN,
)

_UPLINK_KINDS = (
    RuleKind.FORWARD_ESTABLISHED,
    RuleKind.FORWARD_UPLINK,
    RuleKind.MASQUERADE,
)


class RuleSynchronizer:
    """Reconciles firewall rules with session-store membership and uplink state."""

    def __init__(
        self,
        store: SessionStore,
        backend: RuleBackend,
        probe: LinkProbe,
        policy: RedirectPolicy,
        poll_interval: float = 5.0,
        probe_timeout: float = 2.0,
        retries: int = 3,
        backoff: float = 0.5,
    ) -> None:
        self._store = store
        self._backend = backend
        self._probe = probe
        self._policy = policy
        self._poll_interval = poll_interval
        self._probe_timeout = probe_timeout
        self._retries = max(1, retries)
        self._backoff = backoff
        self._lock = threading.RLock()
        self._installed: set[Rule] = set()
        self._uplink_up = False
        self._degraded = False
        self._stop_event = threading.Event()
        self._probe_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="uplink-probe"
        )
        self._probe_future: Future[bool] | None = None

    @property
    def degraded(self) -> bool:
        """True after a rule change failed every retry; cleared by a clean sync()."""
        return self._degraded

    @property
    def uplink_up(self) -> bool:
        return self._uplink_up

    def attach(self) -> None:
        """Subscribe to store changes."""
        self._store.add_listener(self.on_store_change)

    # --- Desired state ---

    @staticmethod
    def base_rules() -> list[Rule]:
        return [Rule(kind=k) for k in _BASE_KINDS]

    @staticmethod
    def uplink_rules() -> list[Rule]:
        return [Rule(kind=k) for k in _UPLINK_KINDS]

    def desired_rules(self, clients: frozenset[str] | set[str], uplink_up: bool) -> list[Rule]:
        """The complete rule set for a membership snapshot, in precedence order."""
        rules = [Rule.allow(c) for c in sorted(clients)]
        rules.extend(self.base_rules())
        if uplink_up:
            rules.extend(self.uplink_rules())
        return sort_rules(rules)

    # --- Reconciliation ---

    def sync(self, uplink_up: bool | None = None) -> None:
        """Full, idempotent reconcile of the live rules against the store.

        Missing rules are installed before stale ones are removed, and
        redirect rules are only ever added, so there is no window without
        redirects in place.
        """
        if uplink_up is None:
            uplink_up = self.probe_uplink()

        with self._lock:
            active = Counter(self._with_retry("list active rules", self._backend.list_active))
            desired = self.desired_rules(self._store.snapshot(), uplink_up)
            desired_set = set(desired)

            # Base rules first so a partially applied sync still redirects
            missing = [r for r in desired if r not in active]
            for rule in sorted(missing, key=lambda r: (r.is_allow, r.priority)):
                self._apply("install", self._backend.install, rule)

            for rule, count in active.items():
                extra = count - (1 if rule in desired_set else 0)
                for _ in range(extra):
                    self._apply("remove", self._backend.remove, rule)

            self._installed = desired_set
            self._uplink_up = uplink_up
            if self._degraded:
                logger.info("Rule path recovered — leaving degraded mode")
            self._degraded = False

        logger.info(
            "Synchronized %d rules (%d admitted, uplink %s)",
            len(desired),
            sum(1 for r in desired if r.is_allow),
            "up" if uplink_up else "down",
        )

    def on_store_change(self, change: StoreChange) -> None:
        """Store listener: update only the affected client's allow rule."""
        self.reconcile_client(change.client)

    def reconcile_client(self, client: str) -> None:
        """Make the allow rule for ``client`` match the store's current view.

        Reads the store instead of trusting the change kind, so
        notifications delivered out of order still converge.
        """
        rule = Rule.allow(client)
        with self._lock:
            wanted = self._store.is_admitted(client)
            present = rule in self._installed
            if wanted and not present:
                self._apply("install", self._backend.install, rule)
                self._installed.add(rule)
            elif not wanted and present:
                self._apply("remove", self._backend.remove, rule)
                self._installed.discard(rule)

    def is_installed(self, rule: Rule) -> bool:
        with self._lock:
            return rule in self._installed

    def installed_rules(self) -> list[Rule]:
        with self._lock:
            return sort_rules(list(self._installed))

    # --- Uplink ---

    def probe_uplink(self) -> bool:
        """Query the uplink link state, bounded by ``probe_timeout``.

        A probe that hangs or fails counts as down.
        """
        iface = self._policy.uplink_interface
        if self._probe_future is not None and not self._probe_future.done():
            logger.warning("Previous probe of %s still pending — treating as down", iface)
            return False
        try:
            future = self._probe_executor.submit(self._probe.is_link_up, iface)
        except RuntimeError:
            # Executor already shut down
            return False
        self._probe_future = future
        try:
            return bool(future.result(timeout=self._probe_timeout))
        except FutureTimeout:
            logger.warning("Uplink probe of %s timed out after %.1fs", iface, self._probe_timeout)
            return False
        except OSError as e:
            logger.warning("Uplink probe of %s failed: %s", iface, e)
            return False

    def refresh_uplink(self) -> bool:
        """Probe the uplink and add or retract the NAT/forward rules to match."""
        up = self.probe_uplink()
        with self._lock:
            if up == self._uplink_up:
                return up
            logger.info(
                "Uplink %s is %s", self._policy.uplink_interface, "up" if up else "down"
            )
            for rule in self.uplink_rules():
                if up and rule not in self._installed:
                    self._apply("install", self._backend.install, rule)
                    self._installed.add(rule)
                elif not up and rule in self._installed:
                    self._apply("remove", self._backend.remove, rule)
                    self._installed.discard(rule)
            self._uplink_up = up
        return up

    # --- Consistency ---

    def verify(self) -> None:
        """Compare the live table with the store.

        Raises StoreConsistencyError on any divergence. Grants that have
        expired but not yet been reaped are tolerated, as are grants younger
        than one poll interval whose store listener may still be waiting
        for the lock.
        """
        with self._lock:
            active = Counter(self._with_retry("list active rules", self._backend.list_active))
            expected = self._store.snapshot()
            pending = {g.client for g in self._store.expired()}
            now = self._store.now()
            settling = {
                g.client for g in self._store.grants()
                if now - g.granted_at < self._poll_interval
            }
            allowed = {r.client for r in active if r.is_allow}

            problems: list[str] = []
            missing = expected - allowed
            if missing & settling:
                logger.debug("Allow rules not yet installed for %s", sorted(missing & settling))
            missing -= settling
            leaked = allowed - expected - pending
            if missing:
                problems.append(f"missing allow rules for {sorted(missing)}")
            if leaked:
                problems.append(f"allow rules for non-admitted {sorted(leaked)}")
            for rule in self.base_rules():
                if rule not in active:
                    problems.append(f"missing {rule.rule_id}")
            for rule in self.uplink_rules():
                if self._uplink_up and rule not in active:
                    problems.append(f"missing {rule.rule_id}")
                elif not self._uplink_up and rule in active:
                    problems.append(f"{rule.rule_id} present while uplink is down")
            duplicates = sorted(r.rule_id for r, n in active.items() if n > 1)
            if duplicates:
                problems.append(f"duplicate rules {duplicates}")

        if problems:
            raise StoreConsistencyError("; ".join(problems))

    # --- Loop ---

    def run(self) -> None:
        """Blocking probe→reconcile loop until stop()."""
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self._poll_interval)

    def run_once(self) -> None:
        """One synchronization cycle. Never raises."""
        try:
            self.refresh_uplink()
            if self._degraded:
                self.sync(uplink_up=self._uplink_up)
            else:
                self.verify()
        except StoreConsistencyError as e:
            logger.error("Firewall diverged from session store (%s) — rebuilding", e)
            try:
                self.sync(uplink_up=self._uplink_up)
            except RuleInstallError as exc:
                logger.error("Rebuild failed: %s", exc)
        except RuleInstallError as e:
            logger.error("Rule synchronization failed: %s", e)

    def stop(self) -> None:
        """Signal the loop (and any pending backoff) to stop."""
        self._stop_event.set()

    def close(self) -> None:
        self.stop()
        self._probe_executor.shutdown(wait=False)

    def teardown(self) -> int:
        """Remove every managed rule. Returns how many were removed."""
        removed = 0
        with self._lock:
            for rule in self._with_retry("list active rules", self._backend.list_active):
                try:
                    self._backend.remove(rule)
                    removed += 1
                except RuleInstallError as e:
                    logger.error("Could not remove %s: %s", rule.rule_id, e)
            self._installed.clear()
            self._uplink_up = False
        logger.info("Removed %d managed rules", removed)
        return removed

    def status(self) -> dict:
        with self._lock:
            return {
                "uplink_interface": self._policy.uplink_interface,
                "uplink_up": self._uplink_up,
                "degraded": self._degraded,
                "rules": [r.rule_id for r in sort_rules(list(self._installed))],
            }

    # --- Retry ---

    def _apply(self, verb: str, op: Callable[[Rule], None], rule: Rule) -> None:
        self._with_retry(f"{verb} {rule.rule_id}", lambda: op(rule), rule_id=rule.rule_id)

    def _with_retry(self, what: str, fn: Callable[[], T], rule_id: str = "") -> T:
        delay = self._backoff
        last: RuleInstallError | None = None
        for attempt in range(1, self._retries + 1):
            try:
                return fn()
            except RuleInstallError as e:
                last = e
                logger.warning(
                    "Failed to %s (attempt %d/%d): %s", what, attempt, self._retries, e
                )
                if attempt < self._retries:
                    self._stop_event.wait(timeout=delay)
                    delay *= 2

        self._degraded = True
        logger.error(
            "Giving up on '%s' after %d attempts — new admissions disabled", what, self._retries
        )
        raise RuleInstallError(f"could not {what}: {last}", rule_id) from last
