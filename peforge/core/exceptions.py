# SPDX-License-Identifier: LGPL-3.0-or-later
# peforge/core/exceptions.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Retry classification attached where an error is raised."""

    TRANSIENT = "transient"
    TERMINAL = "terminal"


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are typically 0..255; keep it safe and predictable.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "auth",
    "cookie",
    "bearer",
    "private",
)


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _redact(ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***REDACTED***" if _is_secret_key(str(k)) else v) for k, v in ctx.items()}


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, redaction, single-line.
    red = _redact(ctx)
    return ", ".join(f"{k}={red[k]!r}" for k in sorted(red.keys()))


@dataclass(eq=False)
class PeForgeError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - an ErrorKind used by the retry layer
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None
    kind: Optional[ErrorKind] = None

    default_kind: ClassVar[ErrorKind] = ErrorKind.TERMINAL

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        if self.kind is None:
            self.kind = self.default_kind
        super().__init__(self.msg)
        # Some tooling inspects Exception.args directly.
        self.args = (self.msg,)

    @property
    def transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def with_context(self, **ctx: Any) -> "PeForgeError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context), limit=600)}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "kind": self.kind.value if self.kind else None,
            "message": self.msg,
            "context": _redact(self.context or {}),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(PeForgeError):
    """
    User-facing fatal error (exit code is honored by the top-level main()).
    """
    pass


@dataclass(eq=False)
class AllocationFailure(Fatal):
    """Staging/mount directories could not be created; nothing was mounted."""
    code: int = 10


@dataclass(eq=False)
class ImageNotFound(Fatal):
    code: int = 11


@dataclass(eq=False)
class InvalidImage(Fatal):
    """A candidate image exists but the servicing tool cannot read its metadata."""
    code: int = 12


@dataclass(eq=False)
class MountVerificationFailure(Fatal):
    """Mount reported success (or failed) but the mounted tree is not usable."""
    code: int = 20

    default_kind: ClassVar[ErrorKind] = ErrorKind.TRANSIENT


@dataclass(eq=False)
class DismountFailure(Fatal):
    """
    Dismount retries were exhausted. The image may still be mounted and locked,
    so this is reported separately from ordinary step failures.
    """
    code: int = 21


@dataclass(eq=False)
class PayloadError(Fatal):
    code: int = 30


@dataclass(eq=False)
class InstallationVerificationFailed(Fatal):
    code: int = 31


@dataclass(eq=False)
class RegistryPatchFailure(Fatal):
    code: int = 40


@dataclass(eq=False)
class StartupConfigFailure(Fatal):
    code: int = 50


@dataclass(eq=False)
class CriticalSectionTimeout(Fatal):
    code: int = 60


@dataclass(eq=False)
class HostCommandError(Fatal):
    """
    A host servicing or registry command failed. `kind` is derived from the
    command output when the caller does not pass one.
    """
    code: int = 70
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind is None:
            from .retry import classify_message

            self.kind = classify_message(" ".join((self.msg, self.stdout, self.stderr)))
        super().__post_init__()


@dataclass(eq=False)
class PipelineCancelled(Fatal):
    code: int = 130


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, PeForgeError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
