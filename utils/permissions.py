from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional
import enum

from utils.exceptions import PermissionDenied


class Role(str, enum.Enum):
    admin = "admin"
    supervisor = "supervisor"
    merchant = "merchant"
    driver = "driver"
    customer = "customer"


class Permission(str, enum.Enum):
    view_orders = "view_orders"
    manage_orders = "manage_orders"
    delete_orders = "delete_orders"
    view_wallet = "view_wallet"
    manage_advanced_financials = "manage_advanced_financials"


@dataclass(frozen=True)
class Actor:
    """The caller as described by the identity service: who, which role, which grants."""

    user_id: Optional[int]
    role: Role
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)

    @classmethod
    def build(cls, user_id: Optional[int], role: str, permissions: Iterable[str] = ()) -> "Actor":
        granted = set()
        for p in permissions or ():
            try:
                granted.add(Permission(p))
            except ValueError:
                # Permissions owned by other services are ignored here
                continue
        return cls(user_id=user_id, role=Role(role), permissions=frozenset(granted))

    @property
    def is_privileged(self) -> bool:
        return self.role == Role.admin

    def has(self, permission: Permission) -> bool:
        if self.role == Role.admin:
            return True
        if self.role == Role.supervisor:
            return permission in self.permissions
        return False


def ensure_permission(actor: Actor, permission: Permission) -> None:
    if actor is None or not actor.has(permission):
        raise PermissionDenied(
            f"Missing permission: {permission.value}",
            permission=permission.value,
        )


def ensure_admin(actor: Actor) -> None:
    if actor is None or not actor.is_privileged:
        raise PermissionDenied("Admin access required")
