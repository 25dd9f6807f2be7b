# peforge/core/__init__.py
from .exceptions import ErrorKind, Fatal, PeForgeError
from .retry import RetryExecutor, RetryPolicy, classify_error

__all__ = ["ErrorKind", "Fatal", "PeForgeError", "RetryExecutor", "RetryPolicy", "classify_error"]
