"""
access.py - Access Guard for administrator-only sale operations.

The sale only needs one question answered: is this caller the administrator?
AccessGuard is that protocol; SingleAdministrator is the single-principal
implementation used by default.
"""

from __future__ import annotations
from typing import Protocol, runtime_checkable

from .core import Unauthorized


@runtime_checkable
class AccessGuard(Protocol):
    """Identifies the privileged principal of a sale."""

    def is_administrator(self, caller: str) -> bool:
        ...


class SingleAdministrator:
    """Access guard that recognizes exactly one wallet as administrator."""

    def __init__(self, administrator: str):
        if not administrator or not administrator.strip():
            raise ValueError("administrator cannot be empty")
        self.administrator = administrator

    def is_administrator(self, caller: str) -> bool:
        return caller == self.administrator

    def __repr__(self) -> str:
        return f"SingleAdministrator({self.administrator!r})"


def require_administrator(guard: AccessGuard, caller: str) -> None:
    """
    Raise Unauthorized unless caller is the guard's administrator.

    Raises:
        Unauthorized: If the guard does not recognize caller.
    """
    if not guard.is_administrator(caller):
        raise Unauthorized(f"{caller} is not the sale administrator")
