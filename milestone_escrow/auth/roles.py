"""Caller identity and role checks.

Credential verification is outside this service: the caller identity arrives
already established (the ``X-Caller-Identity`` header at the HTTP edge) and
authorization reduces to comparing it with the expected identity.
"""

from typing import Protocol

from fastapi import HTTPException, Request

from milestone_escrow.config import settings


class Authorizer(Protocol):
    def is_operator(self, caller: str) -> bool: ...


class OperatorAuthority:
    """Grants operator rights to a fixed set of identities."""

    def __init__(self, operators: list[str] | set[str] | None = None) -> None:
        self.operators = frozenset(settings.operator_identities if operators is None else operators)

    def is_operator(self, caller: str) -> bool:
        return caller in self.operators


CALLER_HEADER = "X-Caller-Identity"


async def get_caller(request: Request) -> str:
    """FastAPI dependency: the identity the request acts as."""
    caller = request.headers.get(CALLER_HEADER, "").strip()
    if not caller:
        raise HTTPException(status_code=403, detail="Missing caller identity")
    return caller
