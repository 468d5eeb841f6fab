"""
Caller identity.

Authentication happens at the gateway in front of this service, which forwards
the verified identity as headers:

  X-User-ID    integer customer/operator id (required on protected routes)
  X-User-Role  "ADMIN" for operators; anything else is a customer
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.core.exceptions import ForbiddenError

OPERATOR_ROLE = "ADMIN"


@dataclass(frozen=True)
class Caller:
    user_id: int
    is_operator: bool = False


def get_current_caller(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Caller:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    return Caller(
        user_id=x_user_id,
        is_operator=(x_user_role or "").upper() == OPERATOR_ROLE,
    )


def require_operator(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_operator:
        raise ForbiddenError()
    return caller
