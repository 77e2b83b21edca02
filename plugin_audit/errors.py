"""Error taxonomy for audit runs."""

from __future__ import annotations


class AuditError(Exception):
    """Base class for plugin-audit errors."""


class ConfigError(AuditError):
    """Raised when the rule catalog or configuration is malformed."""


class SourceMissing(AuditError):
    """Raised when the scan root is unreadable or holds no candidate files."""


class NotFound(AuditError):
    """Raised when a required file cannot be located in the source index."""


class RuleEvaluationError(AuditError):
    """Raised when a single rule's predicate fails to evaluate."""

    def __init__(self, rule_id: str, message: str) -> None:
        super().__init__(f"{rule_id}: {message}")
        self.rule_id = rule_id
        self.message = message


class UnresolvedValue(RuleEvaluationError):
    """Raised when a value a rule compares against cannot be found."""


class PartialScanError(AuditError):
    """Raised when a scan is cancelled before every rule was evaluated."""
