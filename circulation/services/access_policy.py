"""Decides whether the acting principal may perform an operation.

The gate is pure: it only looks at the principal's id and role and at the
target's owner, never at the identity store, and a denial has no side effects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from circulation.services.results import ALLOWED, Decision, denied

ROLE_TIERS = {"member": 1, "librarian": 2, "admin": 3}


class LoanAction(str, Enum):
    VIEW = "view"
    RENEW = "renew"
    UPDATE = "update"
    RETURN = "return"
    DELETE = "delete"
    CHECKOUT = "checkout"


class UserAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


MEMBER_LOAN_ACTIONS = (LoanAction.VIEW, LoanAction.RENEW)


@dataclass(frozen=True)
class Principal:
    principal_id: int
    role: str

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(principal_id=user.user_id, role=user.user_role)

    @property
    def is_staff(self) -> bool:
        return ROLE_TIERS.get(self.role, 0) >= ROLE_TIERS["librarian"]

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def check_principal_role(principal: Principal, minimum_role: str) -> Decision:
    """Allow principals whose role tier is at least ``minimum_role``."""
    if minimum_role not in ROLE_TIERS:
        raise ValueError(f"Unknown role: {minimum_role}")
    if ROLE_TIERS.get(principal.role, 0) >= ROLE_TIERS[minimum_role]:
        return ALLOWED
    return denied(f"This action requires the {minimum_role} role or higher")


def authorize(principal: Principal, loan, action: LoanAction) -> Decision:
    """Decide whether ``principal`` may perform ``action`` on ``loan``.

    Staff may do anything to any loan. Members may only view or renew loans
    they hold.
    """
    if principal.is_staff:
        return ALLOWED
    if action not in MEMBER_LOAN_ACTIONS:
        return denied(f"Only library staff can {action.value} loans")
    if loan is None or loan.member_id != principal.principal_id:
        return denied("not your loan")
    return ALLOWED


def authorize_user_action(
    principal: Principal,
    target_user_id: Optional[int],
    action: UserAction,
    target_role: str = "member",
) -> Decision:
    """Role-tiered account management rules."""
    if action == UserAction.DELETE and target_user_id == principal.principal_id:
        return denied("You cannot delete your own account.")

    if not principal.is_staff:
        if action == UserAction.VIEW and target_user_id == principal.principal_id:
            return ALLOWED
        return denied("Only library staff can manage user accounts")

    if target_role != "member" and action in (UserAction.CREATE, UserAction.DELETE, UserAction.UPDATE):
        if not principal.is_admin:
            return denied("Only administrators can manage staff accounts")
    return ALLOWED
