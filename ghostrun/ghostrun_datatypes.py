"""
Defines the core data types for the ghostrun worker protocol.

A framed block of input lines becomes a Command; each accepted RUN command
becomes an Invocation; each Invocation is answered by a Response.
"""

from enum import Enum
from dataclasses import dataclass
from typing import List, Any, Literal, Optional


class GhostrunError(Exception):
    """Base class for all ghostrun errors."""
    pass


class ConfigError(GhostrunError):
    """Raised for unknown or malformed configuration values."""
    pass


class FragmentError(GhostrunError):
    """Raised by an executor when a fragment cannot be turned into a function value."""
    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class InputClosed(GhostrunError, EOFError):
    """The driver closed the input stream."""
    def __init__(self, partial: Optional[List[str]] = None):
        super().__init__("input stream closed")
        # Lines read before the stream ended without a sentinel
        self.partial = list(partial or [])


class WorkerError(GhostrunError):
    """A RUN command failed on the worker side, or the worker went away."""
    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


# =================================================================
# Protocol Types
# =================================================================

class CommandKind(Enum):
    EVAL = "EVAL"
    RUN = "RUN"
    INVALID = "INVALID"


class InvocationMode(Enum):
    DIRECT = "direct"
    CALLBACK = "callback"


@dataclass(frozen=True)
class Command:
    """A classified block. `token` holds the offending first line for INVALID."""
    kind: CommandKind
    body: tuple = ()
    token: str = ""

    @property
    def text(self) -> str:
        return "\n".join(self.body)


@dataclass(frozen=True)
class Invocation:
    id: int
    mode: InvocationMode
    prefix: str = "RES"

    @property
    def tag(self) -> str:
        return f"{self.prefix}{self.id}"


@dataclass(frozen=True)
class Response:
    """The single tagged outcome of one Invocation."""
    tag: str
    status: Literal['ok', 'err']
    value: Any = None

    @classmethod
    def ok(cls, tag: str, value: Any) -> 'Response':
        return cls(tag, 'ok', value)

    @classmethod
    def err(cls, tag: str, error: Any) -> 'Response':
        return cls(tag, 'err', error)

    @property
    def is_error(self) -> bool:
        return self.status == 'err'
