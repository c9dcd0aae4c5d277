"""Operator identity resolution.

Authentication happens upstream; the gateway forwards the authenticated
operator in ``X-Operator-Id`` and ``X-Operator-Role``.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

BILLING_ROLES = {"billing", "admin"}


@dataclass(frozen=True, slots=True)
class Operator:
    id: str
    role: str


def get_current_operator(
    operator_id: str | None = Header(default=None, alias="X-Operator-Id"),
    operator_role: str | None = Header(default=None, alias="X-Operator-Role"),
) -> Operator:
    """Resolve the operator forwarded by the gateway."""

    identifier = (operator_id or "").strip()
    if not identifier:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Operator identity missing",
        )
    role = (operator_role or "billing").strip().lower() or "billing"
    return Operator(id=identifier, role=role)


def _enforce_roles(operator: Operator, allowed_roles: set[str]) -> Operator:
    if operator.role in allowed_roles:
        return operator
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Insufficient permissions",
    )


def require_billing_operator(operator: Operator = Depends(get_current_operator)) -> Operator:
    """Dependency ensuring the caller may operate on invoices."""
    return _enforce_roles(operator, BILLING_ROLES)


__all__ = [
    "BILLING_ROLES",
    "Operator",
    "get_current_operator",
    "require_billing_operator",
]
