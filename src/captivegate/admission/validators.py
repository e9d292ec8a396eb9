"""Credential validators — pluggable checks behind the admission form."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Protocol, runtime_checkable

from captivegate.errors import UpstreamTimeout, ValidationError
from captivegate.policy.models import ValidatorKind, ValidatorSpec

logger = logging.getLogger(__name__)

USERNAME_FIELD = "auth_user"
PASSWORD_FIELD = "auth_pass"


@runtime_checkable
class Validator(Protocol):
    """Protocol for credential checks."""

    def validate(self, credentials: Mapping[str, str]) -> bool:
        """Return True to admit. May raise ValidationError."""
        ...


class AcceptAllValidator:
    """Admits any submission that fills in the form."""

    def __init__(self, required: tuple[str, ...] = (USERNAME_FIELD, PASSWORD_FIELD)) -> None:
        self._required = required

    def validate(self, credentials: Mapping[str, str]) -> bool:
        missing = [f for f in self._required if not credentials.get(f, "").strip()]
        if missing:
            raise ValidationError(f"missing fields: {', '.join(missing)}")
        return True


class StaticValidator:
    """Checks username/password against an allow-list of sha256 digests."""

    def __init__(self, users: Mapping[str, str]) -> None:
        self._users = {name: digest.lower() for name, digest in users.items()}

    def validate(self, credentials: Mapping[str, str]) -> bool:
        username = credentials.get(USERNAME_FIELD, "").strip()
        password = credentials.get(PASSWORD_FIELD, "")
        if not username or not password:
            raise ValidationError("username and password are required")
        expected = self._users.get(username)
        digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
        if expected is None:
            return False
        return hmac.compare_digest(digest, expected)


class TimedValidator:
    """Bounds another validator by a timeout.

    A validator that does not answer in time raises UpstreamTimeout, which
    the admission service treats like any other rejection.
    """

    def __init__(self, inner: Validator, timeout: float = 5.0) -> None:
        self._inner = inner
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="validator")

    def validate(self, credentials: Mapping[str, str]) -> bool:
        future = self._executor.submit(self._inner.validate, dict(credentials))
        try:
            return bool(future.result(timeout=self._timeout))
        except FutureTimeout:
            future.cancel()
            logger.warning("Credential check timed out after %.1fs", self._timeout)
            raise UpstreamTimeout(f"credential check timed out after {self._timeout}s") from None

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def build_validator(spec: ValidatorSpec, timeout: float = 5.0) -> TimedValidator:
    """Construct the configured validator, wrapped in a timeout."""
    inner: Validator
    if spec.kind == ValidatorKind.STATIC:
        inner = StaticValidator(dict(spec.users))
    else:
        inner = AcceptAllValidator()
    return TimedValidator(inner, timeout=timeout)
