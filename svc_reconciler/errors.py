"""Error taxonomy of the reconciler.

Fatal errors (ResolutionError, DiscoveryError, DirectoryUnavailableError)
stop the run before any mutation. AccountOperationError is scoped to a
single account/action and is recorded in the operation log.
"""
from __future__ import annotations


class ReconcilerError(Exception):
    pass


class ResolutionError(ReconcilerError):
    """Reference group cannot be uniquely resolved."""


class NotFoundError(ResolutionError):
    """Zero or more than one group matched the requested name."""

    def __init__(self, name: str, matches: int = 0) -> None:
        self.name = name
        self.matches = matches
        if matches:
            msg = f"Группа '{name}' неоднозначна: найдено {matches} совпадений."
        else:
            msg = f"Группа '{name}' не найдена."
        super().__init__(msg)


class DiscoveryError(ReconcilerError):
    """Container query failed; no ground-truth account set."""


class DirectoryUnavailableError(ReconcilerError):
    """AD is not configured or the service bind failed."""


class AccountOperationError(ReconcilerError):
    """Add/remove/attribute update of one account failed."""

    retryable = False


class DirectoryTimeoutError(AccountOperationError):
    retryable = True
