import logging

from fastapi import Depends, Request

from .errors import Forbidden, Unauthenticated
from .permissions import authorize
from .sessions import RequestContext, SessionStore

logger = logging.getLogger(__name__)

CUSTOMER_LOGIN_URL = "/auth/login"
ADMIN_LOGIN_URL = "/admin/login"


def get_store(request: Request) -> SessionStore:
    return SessionStore(request.session)


def get_context(store: SessionStore = Depends(get_store)) -> RequestContext:
    return store.snapshot()


def require_customer(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if ctx.customer_id is None:
        raise Unauthenticated(CUSTOMER_LOGIN_URL)
    return ctx


def require_admin(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if not ctx.is_admin:
        raise Unauthenticated(ADMIN_LOGIN_URL)
    return ctx


def require_permission(*keys: str):
    """
    Dependency factory for admin routes, e.g.
    ``ctx: RequestContext = Depends(require_permission("manage_orders"))``.
    Anonymous visitors are sent to the admin login; admins lacking a key get 403.
    """
    required = frozenset(keys)

    def dependency(ctx: RequestContext = Depends(require_admin)) -> RequestContext:
        if not authorize(ctx.capabilities, required):
            logger.warning("admin %s denied, requires %s", ctx.admin_user_id, sorted(required))
            raise Forbidden(f"missing permission(s): {sorted(required - ctx.permissions)}")
        return ctx

    return dependency
