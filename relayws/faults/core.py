"""
Faults - Structured errors raised by relayws.

A fault is an exception with a stable ``code``, a ``domain`` naming the
layer it came from and a ``severity`` that decides how loudly it is
logged when a connection is torn down because of it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional
import logging


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """How serious a fault is; maps onto a logging level."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


class FaultDomain:
    """Layer a fault originated in (config, network, flow)."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain({self.name!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return self.name == other

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Invalid or missing configuration")
FaultDomain.NETWORK = FaultDomain("network", "Transport and protocol errors")
FaultDomain.FLOW = FaultDomain("flow", "Errors raised by message handlers")


DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.NETWORK: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.FLOW: {"severity": Severity.ERROR, "retryable": False},
}


# ============================================================================
# Fault
# ============================================================================

class Fault(Exception):
    """
    Exception with a machine-readable code.

    Subclasses may set ``code``, ``message`` and ``domain`` as class
    attributes instead of passing them.

    Attributes:
        code: Stable identifier (e.g. "WS_SEND_FAILED")
        message: Human-readable summary
        domain: Originating layer
        severity: Defaults per domain (see ``DOMAIN_DEFAULTS``)
        retryable: Whether retrying the same operation can succeed
        metadata: Extra context, e.g. ``ws_close_code``

    Handlers may raise faults too; the ``error`` reply then carries the
    code:

        ```python
        def join(ctx):
            raise Fault("ROOM_FULL", "Room 'lobby' is full", domain=FaultDomain.FLOW)
        ```
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{type(self).__name__} requires code, message and domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, DOMAIN_DEFAULTS[FaultDomain.FLOW])
        self.severity = severity or defaults["severity"]
        self.retryable = defaults["retryable"] if retryable is None else retryable
        self.metadata = metadata or {}

    @property
    def close_code(self) -> Optional[int]:
        """Websocket close code associated with the fault, if any."""
        return self.metadata.get("ws_close_code")

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, domain={self.domain.value}, severity={self.severity.value})"

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for logs."""
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "metadata": self.metadata,
        }
