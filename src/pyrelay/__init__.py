"""pyrelay - send Python code to a live interpreter, one unit at a time."""

from .driver import Driver
from .locator import Block, BlockKind, BlockLocator
from .session import InterpreterSession, SessionManager
from .source import SourceBuffer

__version__ = "0.1.0"

__all__ = ["Block", "BlockKind", "BlockLocator", "Driver", "InterpreterSession", "SessionManager", "SourceBuffer"]
