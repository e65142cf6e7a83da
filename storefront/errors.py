"""Storefront domain exceptions.

Services raise these after their transaction has been rolled back; the
routers turn them into redirects and the app-level handlers in ``main``
cover the ones that end the request (403, 404, login redirect).
"""


class StorefrontError(Exception):
    """Base class for expected, user-facing failures."""


class Unauthenticated(StorefrontError):
    """No identity in the session for an action that needs one."""

    def __init__(self, login_url: str = "/auth/login"):
        super().__init__(f"login required ({login_url})")
        self.login_url = login_url


class EmptyCart(StorefrontError):
    """Checkout attempted with nothing in the cart."""


class NotFound(StorefrontError):
    """A product, order or other row referenced by the request does not exist."""


class InsufficientStock(StorefrontError):
    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"insufficient stock for product {product_id}: have {available}, need {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class Conflict(StorefrontError):
    """Lost the race on a conditional status update; nothing was changed."""


class Forbidden(StorefrontError):
    """The permission gate refused the action."""


class InvalidInput(StorefrontError):
    """Request data failed a business rule (unknown status, bad form values)."""
