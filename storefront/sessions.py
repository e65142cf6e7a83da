"""
Boundary to the external session store.

The session itself is an opaque mutable mapping owned by the session
middleware. Handlers never read it directly: they get an immutable
RequestContext snapshot taken when the request starts, and write back
through SessionStore.
"""
from dataclasses import dataclass
from typing import FrozenSet, List, MutableMapping, Optional, Sequence, Tuple

from .cart import CartLine
from .permissions import Capabilities

CART = "cart"
CUSTOMER_ID = "customerId"
CUSTOMER_NAME = "customerName"
IS_ADMIN = "isAdmin"
ADMIN_USER_ID = "adminUserId"
ADMIN_USERNAME = "adminUsername"
IS_SUPER_ADMIN = "isSuperAdmin"
PERMISSIONS = "permissions"
ROLE_NAME = "roleName"


@dataclass(frozen=True)
class RequestContext:
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    is_admin: bool = False
    admin_user_id: Optional[int] = None
    is_super_admin: bool = False
    permissions: FrozenSet[str] = frozenset()
    role_name: Optional[str] = None
    cart: Tuple[CartLine, ...] = ()

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities(is_super_admin=self.is_super_admin, permissions=self.permissions)


class SessionStore:
    def __init__(self, data: MutableMapping):
        self._data = data

    def snapshot(self) -> RequestContext:
        d = self._data
        is_admin = bool(d.get(IS_ADMIN))
        return RequestContext(
            customer_id=d.get(CUSTOMER_ID),
            customer_name=d.get(CUSTOMER_NAME),
            is_admin=is_admin,
            admin_user_id=d.get(ADMIN_USER_ID) if is_admin else None,
            is_super_admin=is_admin and bool(d.get(IS_SUPER_ADMIN)),
            permissions=frozenset(d.get(PERMISSIONS) or ()) if is_admin else frozenset(),
            role_name=d.get(ROLE_NAME),
            cart=tuple(self.cart()),
        )

    # ---- cart ----
    def cart(self) -> List[CartLine]:
        return [CartLine.from_dict(x) for x in self._data.get(CART) or []]

    def save_cart(self, lines: Sequence[CartLine]) -> None:
        self._data[CART] = [line.to_dict() for line in lines]

    def clear_cart(self) -> None:
        self._data[CART] = []

    # ---- customer ----
    def login_customer(self, customer_id: int, name: str) -> None:
        self._data[CUSTOMER_ID] = customer_id
        self._data[CUSTOMER_NAME] = name

    def logout_customer(self) -> None:
        self._data.pop(CUSTOMER_ID, None)
        self._data.pop(CUSTOMER_NAME, None)

    # ---- admin ----
    def login_admin(self, user_id: int, username: str, is_super_admin: bool,
                    permissions: Sequence[str], role_name: str) -> None:
        # snapshot; not refreshed until the next login
        self._data[IS_ADMIN] = True
        self._data[ADMIN_USER_ID] = user_id
        self._data[ADMIN_USERNAME] = username
        self._data[IS_SUPER_ADMIN] = bool(is_super_admin)
        self._data[PERMISSIONS] = list(permissions)
        self._data[ROLE_NAME] = role_name

    def logout_admin(self) -> None:
        self._data[IS_ADMIN] = False
        self._data[IS_SUPER_ADMIN] = False
        self._data[PERMISSIONS] = []
        for key in (ADMIN_USER_ID, ADMIN_USERNAME, ROLE_NAME):
            self._data.pop(key, None)
