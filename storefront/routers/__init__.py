from . import admin, auth, orders, shop

__all__ = ["admin", "auth", "orders", "shop"]
