"""Exceptions that cross component boundaries.

Adapter failures are never raised; they come back as result models with
an ``error`` field. Only intake validation and operator-fixable
configuration problems are exceptions.
"""


class QAScanError(Exception):
    """Base class for qascan errors."""


class ScanValidationError(QAScanError, ValueError):
    """Bad input rejected at intake (invalid URL, unsupported provider)."""


class ConfigurationError(QAScanError, RuntimeError):
    """Missing credential or downstream target, fixable by an operator, not by retrying."""


class ReportNotFoundError(QAScanError, KeyError):
    """No record exists for the given report id."""


class ScanTimeoutError(QAScanError, TimeoutError):
    """A whole pipeline run exceeded ``timeouts.task``; the task queue retries it."""
