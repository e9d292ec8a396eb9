"""Tests for validators, the submission log, and the admission service."""

from __future__ import annotations

import hashlib
import os
import stat
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from captivegate.admission.audit import SubmissionLog, format_record
from captivegate.admission.service import AdmissionService
from captivegate.admission.validators import (
    AcceptAllValidator,
    StaticValidator,
    TimedValidator,
    Validator,
    build_validator,
)
from captivegate.errors import AdmissionUnavailable, UpstreamTimeout, ValidationError
from captivegate.policy.models import ValidatorKind, ValidatorSpec
from captivegate.rules.models import Rule
from captivegate.session.models import Outcome, SubmissionRecord, SubmissionState

GOOD = {"auth_user": "guest", "auth_pass": "password"}
BAD = {"auth_user": "guest", "auth_pass": "wrong"}
USERS = {"guest": hashlib.sha256(b"password").hexdigest()}


@pytest.fixture
def log(tmp_path: Path) -> SubmissionLog:
    return SubmissionLog(tmp_path / "data" / "submissions.log")


@pytest.fixture
def service(store, synchronizer, log) -> AdmissionService:
    synchronizer.sync()
    return AdmissionService(store, synchronizer, StaticValidator(USERS), ttl=300, log=log)


class TestValidators:
    def test_accept_all_requires_fields(self):
        validator = AcceptAllValidator()
        assert validator.validate(GOOD) is True
        with pytest.raises(ValidationError, match="auth_pass"):
            validator.validate({"auth_user": "x", "auth_pass": "  "})

    def test_static_validator(self):
        validator = StaticValidator(USERS)
        assert isinstance(validator, Validator)
        assert validator.validate(GOOD) is True
        assert validator.validate(BAD) is False
        assert validator.validate({"auth_user": "nobody", "auth_pass": "password"}) is False
        with pytest.raises(ValidationError):
            validator.validate({"auth_user": "guest"})

    def test_timed_validator_passes_result_through(self):
        validator = TimedValidator(StaticValidator(USERS), timeout=1)
        try:
            assert validator.validate(GOOD) is True
            assert validator.validate(BAD) is False
        finally:
            validator.close()

    def test_timed_validator_times_out(self):
        release = threading.Event()
        slow = MagicMock()
        slow.validate.side_effect = lambda creds: release.wait(5)
        validator = TimedValidator(slow, timeout=0.05)
        try:
            with pytest.raises(UpstreamTimeout):
                validator.validate(GOOD)
        finally:
            release.set()
            validator.close()

    def test_upstream_timeout_is_a_validation_error(self):
        assert issubclass(UpstreamTimeout, ValidationError)

    def test_build_validator(self):
        spec = ValidatorSpec(kind=ValidatorKind.STATIC, users=tuple(USERS.items()))
        validator = build_validator(spec, timeout=1)
        try:
            assert validator.validate(GOOD) is True
            assert validator.validate(BAD) is False
        finally:
            validator.close()


class TestSubmissionLog:
    def test_format(self):
        record = SubmissionRecord(client="10.0.0.10", outcome=Outcome.SUCCESS, timestamp=0)
        assert format_record(record) == "1970-01-01T00:00:00+00:00 SUCCESS\n"

    def test_append_only_and_permissions(self, log):
        log.append(SubmissionRecord("10.0.0.10", Outcome.FAILURE, timestamp=60))
        log.append(SubmissionRecord("10.0.0.10", Outcome.SUCCESS, timestamp=120))
        lines = log.path.read_text().splitlines()
        assert lines == [
            "1970-01-01T00:01:00+00:00 FAILURE",
            "1970-01-01T00:02:00+00:00 SUCCESS",
        ]
        mode = stat.S_IMODE(os.stat(log.path).st_mode)
        assert mode & 0o007 == 0


class TestAdmissionService:
    def test_valid_submission_admits_before_returning(self, service, store, backend, log):
        result = service.submit("10.0.0.10", GOOD)
        assert result.state == SubmissionState.ACKNOWLEDGED
        assert result.accepted
        assert result.grant.expires_at - result.grant.granted_at == 300
        assert store.is_admitted("10.0.0.10")
        assert Rule.allow("10.0.0.10") in backend.list_active()
        assert log.path.read_text().endswith(" SUCCESS\n")

    def test_invalid_credentials_rejected_and_logged(self, service, store, log):
        store_admit = MagicMock(wraps=store.admit)
        store.admit = store_admit
        result = service.submit("10.0.0.10", BAD)
        assert result.state == SubmissionState.REJECTED
        assert result.record.outcome == Outcome.FAILURE
        store_admit.assert_not_called()
        assert not store.is_admitted("10.0.0.10")
        assert log.path.read_text().endswith(" FAILURE\n")

    def test_missing_fields_rejected(self, service, store):
        result = service.submit("10.0.0.10", {})
        assert result.state == SubmissionState.REJECTED
        assert "required" in result.record.reason
        assert not store.is_admitted("10.0.0.10")

    def test_validator_timeout_rejected(self, store, synchronizer, log):
        validator = MagicMock()
        validator.validate.side_effect = UpstreamTimeout("too slow")
        svc = AdmissionService(store, synchronizer, validator, ttl=300, log=log)
        result = svc.submit("10.0.0.10", GOOD)
        assert result.state == SubmissionState.REJECTED
        assert result.record.reason == "too slow"
        assert not store.is_admitted("10.0.0.10")

    def test_invalid_client_address_rejected(self, service, store):
        result = service.submit("testclient", GOOD)
        assert result.state == SubmissionState.REJECTED
        assert len(store) == 0

    def test_degraded_refuses_further_admissions(self, service, synchronizer, store, backend):
        backend.fail_installs = 10
        with pytest.raises(AdmissionUnavailable):
            service.submit("10.0.0.10", GOOD)
        assert synchronizer.degraded
        with pytest.raises(AdmissionUnavailable) as exc_info:
            service.submit("10.0.0.11", GOOD)
        assert exc_info.value.record.outcome == Outcome.FAILURE
        assert exc_info.value.record.reason == "rule path degraded"
        assert not store.is_admitted("10.0.0.10")
        assert not store.is_admitted("10.0.0.11")

    def test_rule_failure_rolls_back(self, service, store, backend, log):
        backend.fail_installs = 10
        with pytest.raises(AdmissionUnavailable) as exc_info:
            service.submit("10.0.0.10", GOOD)
        assert "rule install failed" in exc_info.value.record.reason
        assert not store.is_admitted("10.0.0.10")
        assert Rule.allow("10.0.0.10") not in backend.list_active()
        assert log.path.read_text().endswith(" FAILURE\n")

    def test_log_failure_does_not_block_admission(self, store, synchronizer, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        log = SubmissionLog(blocker / "submissions.log")
        svc = AdmissionService(store, synchronizer, AcceptAllValidator(), ttl=300, log=log)
        synchronizer.sync()
        result = svc.submit("10.0.0.10", GOOD)
        assert result.accepted
