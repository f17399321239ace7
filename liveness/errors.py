# liveness/errors.py
"""Exception types shared across the reconciler."""


class LivenessError(Exception):
    pass


class ConfigError(LivenessError, ValueError):
    pass


class TransientError(LivenessError):
    """A failure worth retrying: timeouts, connection resets, 5xx, 429."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class SessionFatalError(LivenessError):
    """Aborts a whole reconciliation pass."""


class InvalidTransition(LivenessError):
    pass
