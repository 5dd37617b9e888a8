from __future__ import annotations


class FitAssessError(Exception):
    """Base class for errors raised by fitassess."""


class InvalidConfigError(FitAssessError, ValueError):
    pass


class AdapterUnavailableError(FitAssessError):
    """A signal source could not be initialised (missing backend, no camera...)."""


class SessionUnusableError(FitAssessError):
    """No usable signal source for the requested session."""


class NoActiveSessionError(FitAssessError):
    pass


class SampleKindError(FitAssessError, TypeError):
    """Sample kind does not match the running session."""
