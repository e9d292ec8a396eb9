"""Gateway — wires the store, synchronizer, admission path, reaper and DNS."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from captivegate.admission.audit import SubmissionLog
from captivegate.admission.service import AdmissionService
from captivegate.admission.validators import TimedValidator, build_validator
from captivegate.config import GatewayConfig
from captivegate.dns.interceptor import DnsInterceptor
from captivegate.dns.resolver import UpstreamResolver, system_nameservers
from captivegate.dns.server import DnsServer
from captivegate.errors import RuleInstallError
from captivegate.link import LinkProbe, SystemLinkProbe
from captivegate.policy.models import RedirectPolicy
from captivegate.reaper import ExpiryReaper
from captivegate.rules.backend import MemoryBackend, RuleBackend
from captivegate.rules.iptables import IptablesBackend
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.store import SessionStore

logger = logging.getLogger(__name__)


class Gateway:
    """Owns every long-lived component of one captive-portal deployment.

    With ``dry_run`` the firewall is simulated in memory, which lets the
    portal and DNS paths run on a machine without iptables.
    """

    def __init__(
        self,
        policy: RedirectPolicy,
        config: GatewayConfig | None = None,
        backend: RuleBackend | None = None,
        probe: LinkProbe | None = None,
        clock: Callable[[], float] = time.time,
        dry_run: bool = False,
    ) -> None:
        self.policy = policy
        self.config = config or GatewayConfig()
        self.dry_run = dry_run

        if backend is None:
            backend = (
                MemoryBackend()
                if dry_run
                else IptablesBackend(
                    policy,
                    timeout=self.config.rule_timeout,
                    dns_port=self.config.dns_port,
                )
            )
        self.backend = backend
        self.store = SessionStore(clock=clock)
        self.synchronizer = RuleSynchronizer(
            self.store,
            backend,
            probe or SystemLinkProbe(),
            policy,
            poll_interval=self.config.uplink_poll_interval,
            probe_timeout=self.config.probe_timeout,
            retries=self.config.rule_retries,
            backoff=self.config.rule_backoff,
        )
        self.synchronizer.attach()

        self._validator: TimedValidator = build_validator(
            policy.validator, timeout=self.config.validation_timeout
        )
        self.submission_log = SubmissionLog(self.config.submission_log_path)
        self.admission = AdmissionService(
            self.store,
            self.synchronizer,
            self._validator,
            ttl=policy.grant_ttl,
            log=self.submission_log,
        )
        self.reaper = ExpiryReaper(self.store, interval=self.config.reaper_interval)

        servers = policy.upstream_dns
        if servers is None:
            servers = system_nameservers(
                self.config.resolv_conf, exclude=(policy.gateway_ip,)
            )
            if not servers:
                logger.warning(
                    "No usable nameserver in %s; admitted clients will get NXDOMAIN",
                    self.config.resolv_conf,
                )
        self.upstream = UpstreamResolver(servers) if servers else None
        self.interceptor = DnsInterceptor(policy, self.store, self.upstream)
        self.dns_server = DnsServer(self.interceptor, policy.gateway_ip, self.config.dns_port)

        self._threads: list[threading.Thread] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, serve_dns: bool = True) -> None:
        """Install the baseline rules, then start the background threads.

        Raises RuleInstallError if the redirect rules cannot be installed,
        since serving the portal without them would leave the LAN open.
        """
        if isinstance(self.backend, IptablesBackend):
            self.backend.enable_forwarding()

        self.synchronizer.sync()
        logger.info(
            "Gateway '%s' up on %s (LAN %s, uplink %s)",
            self.policy.name,
            self.policy.gateway_ip,
            self.policy.lan_interface,
            self.policy.uplink_interface,
        )

        for name, target in (
            ("reaper", self.reaper.run),
            ("rule-sync", self.synchronizer.run),
        ):
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

        if serve_dns:
            self.dns_server.start()
        self._running = True

    def stop(self, teardown: bool = False) -> None:
        """Stop the background threads, optionally removing every managed rule."""
        self.reaper.stop()
        self.synchronizer.stop()
        self.dns_server.stop()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads.clear()

        if teardown:
            try:
                self.synchronizer.teardown()
            except RuleInstallError as e:
                logger.error("Teardown incomplete: %s", e)

        self.synchronizer.close()
        self._validator.close()
        self._running = False
        logger.info("Gateway '%s' stopped", self.policy.name)
