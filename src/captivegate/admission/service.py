"""Admission service — validates submissions and writes grants.

Received → Validated → Admitted → Acknowledged, or Received → Rejected.
Every path that is not a clean success ends in a denial; nothing here can
leave a client admitted after reporting a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from captivegate.admission.audit import SubmissionLog
from captivegate.admission.validators import Validator
from captivegate.errors import AdmissionUnavailable, RuleInstallError, ValidationError
from captivegate.rules.synchronizer import RuleSynchronizer
from captivegate.session.models import (
    Outcome,
    SubmissionRecord,
    SubmissionResult,
    SubmissionState,
)
from captivegate.session.store import SessionStore, normalize_client

logger = logging.getLogger(__name__)


class AdmissionService:
    """Turns a credential submission from a client address into a grant."""

    def __init__(
        self,
        store: SessionStore,
        synchronizer: RuleSynchronizer,
        validator: Validator,
        ttl: float,
        log: SubmissionLog | None = None,
    ) -> None:
        self._store = store
        self._synchronizer = synchronizer
        self._validator = validator
        self._ttl = ttl
        self._log = log

    @property
    def ttl(self) -> float:
        return self._ttl

    def submit(self, client: str, credentials: Mapping[str, str]) -> SubmissionResult:
        """Process one submission.

        ``client`` must come from the transport connection, never from the
        request body. Raises AdmissionUnavailable while the rule path is
        degraded or when the allow rule could not be installed; the client
        stays unadmitted and the raised error carries the failure record.
        """
        try:
            client = normalize_client(client)
        except ValueError:
            return self._reject(client, "unrecognised client address")

        if self._synchronizer.degraded:
            record = self._record(client, Outcome.FAILURE, "rule path degraded")
            raise AdmissionUnavailable(
                "admissions are suspended until the firewall recovers", record
            )

        try:
            valid = self._validator.validate(credentials)
        except ValidationError as e:
            return self._reject(client, str(e))
        if not valid:
            return self._reject(client, "invalid credentials")

        logger.debug("Credentials accepted for %s", client)

        try:
            grant = self._store.admit(client, self._ttl)
            # No-op when the store listener already installed it
            self._synchronizer.reconcile_client(client)
        except RuleInstallError as e:
            logger.error("Admission of %s rolled back: %s", client, e)
            self._rollback(client)
            record = self._record(client, Outcome.FAILURE, f"rule install failed: {e}")
            raise AdmissionUnavailable(f"could not open access for {client}", record) from e

        record = self._record(client, Outcome.SUCCESS)
        logger.info("Client %s admitted until %.0f", client, grant.expires_at)
        return SubmissionResult(
            state=SubmissionState.ACKNOWLEDGED, record=record, grant=grant
        )

    def _reject(self, client: str, reason: str) -> SubmissionResult:
        logger.info("Rejected submission from %s: %s", client, reason)
        record = self._record(client, Outcome.FAILURE, reason)
        return SubmissionResult(state=SubmissionState.REJECTED, record=record)

    def _rollback(self, client: str) -> None:
        try:
            self._store.revoke(client)
        except RuleInstallError as e:
            # Grant is gone from the store; the synchronizer loop retracts the rule
            logger.error("Rollback of %s left a stale rule: %s", client, e)

    def _record(self, client: str, outcome: Outcome, reason: str = "") -> SubmissionRecord:
        record = SubmissionRecord(client=client, outcome=outcome, reason=reason)
        if self._log is not None:
            try:
                self._log.append(record)
            except OSError as e:
                logger.error("Could not write submission log %s: %s", self._log.path, e)
        return record
