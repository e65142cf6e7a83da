"""
Permission gate for the admin back-office.

Each admin account has at most one role, each role a set of permission
keys. ``authorize`` decides on a capability snapshot alone, so it can be
exercised without any session plumbing.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Permission, role_permissions

DEFAULT_PERMISSIONS = [
    ("view_dashboard", "View Dashboard"),
    ("manage_products", "Manage Products"),
    ("view_orders", "View Orders"),
    ("manage_orders", "Manage Orders"),
    ("manage_categories", "Manage Categories"),
    ("manage_roles", "Manage Roles"),
    ("manage_users", "Manage Admin Users"),
    ("manage_customers", "Manage Customers"),
    ("manage_reviews", "Manage Reviews"),
]


@dataclass(frozen=True)
class Capabilities:
    is_super_admin: bool = False
    permissions: FrozenSet[str] = frozenset()


def authorize(actor: Capabilities, required: Iterable[str]) -> bool:
    """Super admins pass unconditionally; everyone else needs every required key."""
    if actor.is_super_admin:
        return True
    return set(required) <= actor.permissions


def load_permission_keys(session: Session, role_id: Optional[int]) -> List[str]:
    if role_id is None:
        return []
    rows = session.execute(
        select(Permission.key)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(Permission.key)
    ).scalars().all()
    return list(rows)
