"""Typed failure outcomes shared by the gateway components.

None of these ever results in access being granted: callers treat every
one of them as "deny / keep redirecting".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from captivegate.session.models import SubmissionRecord


class CaptiveGateError(Exception):
    """Base class for all gateway errors."""


class ValidationError(CaptiveGateError):
    """Credentials were missing, malformed, or rejected."""


class UpstreamTimeout(ValidationError):
    """The credential-check collaborator did not answer in time."""


class RuleInstallError(CaptiveGateError):
    """The firewall backend rejected (or timed out on) a rule change."""

    def __init__(self, message: str, rule_id: str = "") -> None:
        super().__init__(message)
        self.rule_id = rule_id


class StoreConsistencyError(CaptiveGateError):
    """Installed firewall state diverged from the session store."""


class AdmissionUnavailable(CaptiveGateError):
    """A submission could not be admitted because the rule path is not working.

    ``record`` is the failure entry written for the refused submission.
    """

    def __init__(self, message: str, record: SubmissionRecord | None = None) -> None:
        super().__init__(message)
        self.record = record


class ResolverUnavailable(CaptiveGateError):
    """No configured upstream resolver answered in time."""
