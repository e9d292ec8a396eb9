"""RuleBackend protocol and the in-process backend."""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from captivegate.errors import RuleInstallError
from captivegate.rules.evaluator import RuleTable, Verdict
from captivegate.rules.models import Packet, Rule, sort_rules

logger = logging.getLogger(__name__)


@runtime_checkable
class RuleBackend(Protocol):
    """Protocol for firewall backends driven by the rule synchronizer."""

    def install(self, rule: Rule) -> None:
        """Add a rule. Raises RuleInstallError on failure."""
        ...

    def remove(self, rule: Rule) -> None:
        """Delete a rule. Raises RuleInstallError on failure."""
        ...

    def list_active(self) -> list[Rule]:
        """Return the managed rules currently installed, in precedence order."""
        ...


class MemoryBackend:
    """Keeps the rule table in memory.

    Used for dry runs and tests. Like a real firewall it does not
    de-duplicate: installing a rule twice leaves two entries. Failures can
    be injected with ``fail_installs`` / ``fail_removes`` (count of upcoming
    calls that raise).
    """

    def __init__(self) -> None:
        self._rules: list[Rule] = []
        self._lock = threading.Lock()
        self.fail_installs = 0
        self.fail_removes = 0
        self.install_calls = 0
        self.remove_calls = 0

    def install(self, rule: Rule) -> None:
        with self._lock:
            self.install_calls += 1
            if self.fail_installs > 0:
                self.fail_installs -= 1
                raise RuleInstallError(f"injected install failure: {rule.rule_id}", rule.rule_id)
            self._rules.append(rule)
            self._rules = sort_rules(self._rules)

    def remove(self, rule: Rule) -> None:
        with self._lock:
            self.remove_calls += 1
            if self.fail_removes > 0:
                self.fail_removes -= 1
                raise RuleInstallError(f"injected remove failure: {rule.rule_id}", rule.rule_id)
            try:
                self._rules.remove(rule)
            except ValueError:
                raise RuleInstallError(f"rule not installed: {rule.rule_id}", rule.rule_id) from None

    def list_active(self) -> list[Rule]:
        with self._lock:
            return list(self._rules)

    def classify(self, packet: Packet) -> Verdict:
        """Run a packet through the currently installed table."""
        return RuleTable(self.list_active()).classify(packet)
