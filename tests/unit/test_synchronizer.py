"""Tests for the rule synchronizer."""

from __future__ import annotations

import threading

import pytest

from captivegate.errors import RuleInstallError, StoreConsistencyError
from captivegate.link import StaticLinkProbe
from captivegate.rules.backend import MemoryBackend
from captivegate.rules.models import Decision, Packet, Rule, RuleKind
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.models import ChangeKind, StoreChange


class _HangingProbe:
    def __init__(self) -> None:
        self.release = threading.Event()

    def is_link_up(self, interface: str) -> bool:
        self.release.wait(timeout=5)
        return True


class _RecordingBackend(MemoryBackend):
    """MemoryBackend that logs every call, to check ordering."""

    def __init__(self) -> None:
        super().__init__()
        self.ops: list[tuple[str, str]] = []

    def install(self, rule: Rule) -> None:
        super().install(rule)
        self.ops.append(("install", rule.rule_id))

    def remove(self, rule: Rule) -> None:
        super().remove(rule)
        self.ops.append(("remove", rule.rule_id))


class TestDesiredState:
    def test_desired_rules_with_uplink(self, synchronizer):
        rules = synchronizer.desired_rules({"10.0.0.11", "10.0.0.10"}, uplink_up=True)
        assert rules[:2] == [Rule.allow("10.0.0.10"), Rule.allow("10.0.0.11")]
        assert rules[-1] == Rule(RuleKind.DROP_LAN)
        assert Rule(RuleKind.MASQUERADE) in rules

    def test_desired_rules_without_uplink(self, synchronizer):
        rules = synchronizer.desired_rules(set(), uplink_up=False)
        assert not any(r.is_uplink for r in rules)
        assert sum(1 for r in rules if r.is_redirect) == 4


class TestSync:
    def test_sync_installs_base_and_uplink(self, synchronizer, backend):
        synchronizer.sync()
        kinds = {r.kind for r in backend.list_active()}
        assert kinds == set(RuleKind) - {RuleKind.ALLOW_CLIENT}
        assert synchronizer.uplink_up is True

    def test_sync_is_idempotent(self, synchronizer, backend, store):
        store.admit("10.0.0.10", 300)
        synchronizer.sync()
        first = backend.list_active()
        calls = backend.install_calls
        synchronizer.sync()
        assert backend.list_active() == first
        assert backend.install_calls == calls
        assert len(first) == len(set(first))

    def test_sync_removes_duplicates_and_stale_entries(self, synchronizer, backend):
        backend.install(Rule(RuleKind.DROP_LAN))
        backend.install(Rule(RuleKind.DROP_LAN))
        backend.install(Rule.allow("10.0.0.99"))
        synchronizer.sync()
        active = backend.list_active()
        assert active.count(Rule(RuleKind.DROP_LAN)) == 1
        assert Rule.allow("10.0.0.99") not in active

    def test_sync_installs_before_removing(self, store, probe, policy):
        backend = _RecordingBackend()
        backend.install(Rule.allow("10.0.0.99"))
        backend.ops.clear()
        sync = RuleSynchronizer(store, backend, probe, policy, backoff=0)
        sync.sync()
        sync.close()
        first_remove = next(i for i, op in enumerate(backend.ops) if op[0] == "remove")
        assert all(op[0] == "install" for op in backend.ops[:first_remove])
        assert backend.ops[0] == ("install", "redirect-dns-udp")

    def test_admitted_client_passes_before_redirect(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        for dport, proto in ((53, "udp"), (80, "tcp"), (443, "tcp")):
            assert backend.classify(Packet("10.0.0.10", dport, proto)).decision == Decision.PASS
            assert backend.classify(Packet("10.0.0.11", dport, proto)).decision in (
                Decision.REDIRECT_DNS,
                Decision.REDIRECT_PORTAL,
            )


class TestIncremental:
    def test_admit_installs_allow_rule_synchronously(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        assert Rule.allow("10.0.0.10") in backend.list_active()
        assert synchronizer.is_installed(Rule.allow("10.0.0.10"))

    def test_revoke_retracts_allow_rule(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        store.revoke("10.0.0.10")
        assert Rule.allow("10.0.0.10") not in backend.list_active()

    def test_expiry_retracts_allow_rule(self, synchronizer, backend, store, clock):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        clock.advance(300)
        store.purge_expired()
        assert Rule.allow("10.0.0.10") not in backend.list_active()

    def test_refresh_does_not_duplicate(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        store.admit("10.0.0.10", 300)
        store.touch("10.0.0.10")
        assert backend.list_active().count(Rule.allow("10.0.0.10")) == 1

    def test_out_of_order_notification_converges(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        store.revoke("10.0.0.10")
        # A stale "admitted" notification arriving late must not reinstall
        synchronizer.on_store_change(StoreChange(ChangeKind.ADMITTED, "10.0.0.10"))
        assert Rule.allow("10.0.0.10") not in backend.list_active()


class TestUplink:
    def test_uplink_rules_added_when_link_comes_up(self, store, backend, policy):
        probe = StaticLinkProbe(up=False)
        sync = RuleSynchronizer(store, backend, probe, policy, backoff=0)
        sync.attach()
        sync.sync()

        active = backend.list_active()
        assert not any(r.is_uplink for r in active)
        assert sum(1 for r in active if r.is_redirect) == 4
        assert backend.classify(Packet("10.0.0.11", 22)).decision == Decision.DROP

        probe.up = True
        removes_before = backend.remove_calls
        sync.run_once()

        active = backend.list_active()
        assert {Rule(k) for k in (RuleKind.MASQUERADE, RuleKind.FORWARD_UPLINK)} <= set(active)
        assert sum(1 for r in active if r.is_redirect) == 4
        # Redirects were never touched on the way up
        assert backend.remove_calls == removes_before
        sync.close()

    def test_uplink_goes_down(self, synchronizer, backend, probe):
        synchronizer.sync()
        probe.up = False
        assert synchronizer.refresh_uplink() is False
        assert not any(r.is_uplink for r in backend.list_active())
        assert synchronizer.uplink_up is False

    def test_hung_probe_counts_as_down(self, store, backend, policy):
        probe = _HangingProbe()
        sync = RuleSynchronizer(store, backend, probe, policy, probe_timeout=0.05, backoff=0)
        try:
            assert sync.probe_uplink() is False
            # Still pending: the next probe does not queue behind it
            assert sync.probe_uplink() is False
        finally:
            probe.release.set()
            sync.close()

    def test_probe_error_counts_as_down(self, store, backend, policy):
        class _Broken:
            def is_link_up(self, interface):
                raise OSError("no such device")

        sync = RuleSynchronizer(store, backend, _Broken(), policy, backoff=0)
        assert sync.probe_uplink() is False
        sync.close()


class TestFailures:
    def test_transient_failure_is_retried(self, synchronizer, backend, store):
        synchronizer.sync()
        backend.fail_installs = 2
        store.admit("10.0.0.10", 300)
        assert Rule.allow("10.0.0.10") in backend.list_active()
        assert synchronizer.degraded is False

    def test_persistent_failure_enters_degraded_mode(self, synchronizer, backend, store):
        synchronizer.sync()
        backend.fail_installs = 10
        with pytest.raises(RuleInstallError):
            store.admit("10.0.0.10", 300)
        assert synchronizer.degraded is True
        assert not synchronizer.is_installed(Rule.allow("10.0.0.10"))

    def test_clean_sync_clears_degraded(self, synchronizer, backend, store):
        synchronizer.sync()
        backend.fail_installs = 10
        with pytest.raises(RuleInstallError):
            store.admit("10.0.0.10", 300)
        backend.fail_installs = 0
        synchronizer.run_once()
        assert synchronizer.degraded is False
        assert Rule.allow("10.0.0.10") in backend.list_active()

    def test_run_once_never_raises(self, synchronizer, backend):
        backend.fail_installs = 100
        synchronizer.run_once()
        assert synchronizer.degraded is True


class TestVerify:
    def test_verify_clean(self, synchronizer, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        synchronizer.verify()

    def test_verify_detects_missing_allow_rule(self, synchronizer, backend, store, clock):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        backend.remove(Rule.allow("10.0.0.10"))
        clock.advance(1)
        with pytest.raises(StoreConsistencyError, match="missing allow"):
            synchronizer.verify()

    def test_verify_tolerates_allow_rule_still_being_installed(
        self, synchronizer, backend, store, clock
    ):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        # Committed grant whose listener has not reached the backend yet
        backend.remove(Rule.allow("10.0.0.10"))
        synchronizer.verify()

        clock.advance(1)
        with pytest.raises(StoreConsistencyError):
            synchronizer.verify()

    def test_verify_detects_missing_uplink_rule(self, synchronizer, backend):
        synchronizer.sync()
        backend.remove(Rule(RuleKind.FORWARD_UPLINK))
        with pytest.raises(StoreConsistencyError, match="missing forward-uplink"):
            synchronizer.verify()

    def test_verify_detects_uplink_rule_while_link_down(self, store, backend, policy):
        sync = RuleSynchronizer(store, backend, StaticLinkProbe(up=False), policy, backoff=0)
        try:
            sync.sync()
            backend.install(Rule(RuleKind.MASQUERADE))
            with pytest.raises(StoreConsistencyError, match="masquerade present"):
                sync.verify()
            sync.run_once()
            assert Rule(RuleKind.MASQUERADE) not in backend.list_active()
        finally:
            sync.close()

    def test_lost_uplink_rule_is_restored(self, synchronizer, backend):
        synchronizer.sync()
        backend.remove(Rule(RuleKind.FORWARD_UPLINK))
        synchronizer.run_once()
        active = backend.list_active()
        assert Rule(RuleKind.FORWARD_UPLINK) in active
        assert active.count(Rule(RuleKind.MASQUERADE)) == 1

    def test_verify_detects_leaked_rule(self, synchronizer, backend):
        synchronizer.sync()
        backend.install(Rule.allow("10.0.0.66"))
        with pytest.raises(StoreConsistencyError, match="non-admitted"):
            synchronizer.verify()

    def test_verify_tolerates_unreaped_expiry(self, synchronizer, store, clock):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        clock.advance(301)
        synchronizer.verify()

    def test_divergence_triggers_full_resync(self, synchronizer, backend):
        synchronizer.sync()
        backend.remove(Rule(RuleKind.REDIRECT_HTTP))
        backend.install(Rule.allow("10.0.0.66"))
        synchronizer.run_once()
        active = backend.list_active()
        assert Rule(RuleKind.REDIRECT_HTTP) in active
        assert Rule.allow("10.0.0.66") not in active


class TestTeardown:
    def test_teardown_removes_everything(self, synchronizer, backend, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        removed = synchronizer.teardown()
        assert removed == 9
        assert backend.list_active() == []
        assert synchronizer.installed_rules() == []

    def test_status(self, synchronizer, store):
        synchronizer.sync()
        store.admit("10.0.0.10", 300)
        status = synchronizer.status()
        assert status["uplink_interface"] == "eth0"
        assert status["uplink_up"] is True
        assert status["degraded"] is False
        assert status["rules"][0] == "allow:10.0.0.10"
        assert status["rules"][-1] == "drop-lan"
