"""Session error hierarchy.

Two families matter to callers:

- ``ConfigurationError`` is fatal and raised at handler construction or
  ``open()`` time. It should abort application startup.
- ``TransientBackendFailure`` (and subclasses) covers everything that can go
  wrong while serving a request. Handlers never let these escape; they log
  them, keep the instance on ``handler.last_error`` and return a failure
  value so the request continues with an empty session.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for all session errors."""


class ConfigurationError(SessionError):
    """Invalid or missing session configuration."""

    @classmethod
    def empty_save_path(cls) -> ConfigurationError:
        return cls("Session: no save path configured for this handler")

    @classmethod
    def invalid_save_path(cls, path: str) -> ConfigurationError:
        return cls(f"Session: save path '{path}' is not a directory and could not be created")

    @classmethod
    def write_protected_save_path(cls, path: str) -> ConfigurationError:
        return cls(f"Session: save path '{path}' is not writable by this process")

    @classmethod
    def invalid_save_path_format(cls, path: str) -> ConfigurationError:
        return cls(f"Session: invalid save path format '{path}'")

    @classmethod
    def unknown_handler(cls, name: str) -> ConfigurationError:
        return cls(f"Session: handler '{name}' is not registered")


class TransientBackendFailure(SessionError):
    """Operational failure; the request degrades to an empty session."""


class IoUnavailable(TransientBackendFailure):
    """The backing store cannot be opened, reached or enumerated."""


class LockTimeout(TransientBackendFailure):
    """The session lock was not acquired within the retry budget."""

    def __init__(self, key: str, attempts: int) -> None:
        super().__init__(f"Session: unable to obtain lock for '{key}' after {attempts} attempts")
        self.key = key
        self.attempts = attempts


class WriteFailed(TransientBackendFailure):
    """The payload was not persisted."""


class DataIntegrityWarning(WriteFailed):
    """Only part of the payload reached the store.

    The handler fingerprint reflects the bytes actually written, so the next
    write retries instead of assuming the payload is saved.
    """

    def __init__(self, message: str, written: int, expected: int) -> None:
        super().__init__(message)
        self.written = written
        self.expected = expected
