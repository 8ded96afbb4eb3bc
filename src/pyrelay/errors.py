"""Application-level exception types for pyrelay."""

from __future__ import annotations


class PyrelayError(Exception):
    """Base exception for pyrelay."""


class ConfigurationError(PyrelayError):
    """Raised for invalid settings or an interpreter that cannot be resolved."""


class NavigationError(PyrelayError):
    """Raised when a boundary scan makes no progress."""


class MalformedBlockError(PyrelayError):
    """Raised when a fragment has inconsistent block indentation."""


class NoActiveBlockError(PyrelayError):
    """Raised when the cursor is outside the requested unit."""


class SessionUnavailableError(PyrelayError):
    """Raised when an operation needs a live interpreter and none exists."""


class SessionBusyError(PyrelayError):
    """Raised when a capturing send is issued while another capture is pending."""
