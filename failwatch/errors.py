from __future__ import annotations


class FailwatchError(RuntimeError):
    """Base failwatch error."""


class ConfigError(FailwatchError):
    """Raised at startup when required configuration is missing or invalid."""


class StoreError(FailwatchError):
    """Raised when the failure store cannot write or read records."""


class NotifyError(FailwatchError):
    """Raised when an alert could not be delivered."""
