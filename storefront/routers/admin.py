import logging
import math
import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .. import lifecycle, reviews
from ..db import get_session
from ..errors import Conflict, InsufficientStock, InvalidInput, NotFound
from ..models import AdminUser, Category, Customer, Order, Permission, Product, ProductReview, Role
from ..permissions import load_permission_keys
from ..schemas import (
    AdminUserIn, AdminUserOut, CategoryIn, CategoryOut, CustomerDetailOut, CustomerOut, CustomerStatsOut,
    DashboardOut, DashboardStats, OrderOut, OrderSummaryOut, PermissionOut, ProductIn, ProductOut, ReviewOut,
    ReviewPageOut, RoleAssignIn, RoleIn, RoleOut,
)
from ..security import hash_password, verify_password
from ..sessions import RequestContext, SessionStore
from ..deps import get_store, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

RECENT_ORDERS = 20
PRODUCTS_PER_PAGE = 10
REVIEWS_PER_PAGE = 20


def _pages(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


# ---------- Login ----------
@router.get("/login")
def login_page(error: Optional[str] = None):
    return {"login": "/admin/login", "error": error}


@router.post("/login")
def login(
    username: str = Form(""),
    password: str = Form(""),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    user = session.execute(select(AdminUser).where(AdminUser.username == username)).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("failed admin login for %r", username)
        return RedirectResponse(f"/admin/login?{urlencode({'error': 'Invalid credentials'})}", status_code=302)

    permissions = load_permission_keys(session, user.role_id)
    role_name = user.role.name if user.role is not None else "No Role"
    store.login_admin(user.id, user.username, user.is_super_admin, permissions, role_name)
    logger.info("admin %s logged in (super=%s, permissions=%s)", user.username, user.is_super_admin, permissions)
    return RedirectResponse("/admin", status_code=302)


@router.get("/logout")
def logout(store: SessionStore = Depends(get_store)):
    store.logout_admin()
    return RedirectResponse("/", status_code=302)


# ---------- Dashboard ----------
def confirmed_revenue(session: Session, *criteria) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(Order.total), 0))
        .where(Order.status.in_(lifecycle.CONFIRMED_STATUSES), *criteria)
    ).scalar_one()
    return Decimal(total).quantize(Decimal("0.01"))


@router.get("", response_model=DashboardOut)
def dashboard(
    page: int = 1,
    _: RequestContext = Depends(require_permission("view_dashboard")),
    session: Session = Depends(get_session),
):
    def count(model) -> int:
        return session.execute(select(func.count()).select_from(model)).scalar_one()

    stats = DashboardStats(
        product_count=count(Product),
        order_count=count(Order),
        customer_count=count(Customer),
        total_revenue=confirmed_revenue(session),
    )
    page = max(1, page)
    orders = session.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(RECENT_ORDERS)
    ).scalars().all()
    products = session.execute(
        select(Product)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(PRODUCTS_PER_PAGE)
        .offset((page - 1) * PRODUCTS_PER_PAGE)
    ).scalars().all()
    return DashboardOut(
        stats=stats,
        orders=[OrderSummaryOut.model_validate(o) for o in orders],
        products=[ProductOut.model_validate(p) for p in products],
        page=page,
        total_pages=_pages(stats.product_count, PRODUCTS_PER_PAGE),
    )


# ---------- Products ----------
def _check_category(session: Session, category_id):
    if category_id is not None and session.get(Category, category_id) is None:
        raise NotFound(f"category {category_id} not found")


@router.post("/products", response_model=ProductOut)
def create_product(
    payload: ProductIn,
    _: RequestContext = Depends(require_permission("manage_products")),
    session: Session = Depends(get_session),
):
    _check_category(session, payload.category_id)
    p = Product(**payload.model_dump())
    session.add(p)
    session.flush()
    session.refresh(p)
    return p


@router.put("/products/{pid}", response_model=ProductOut)
def update_product(
    pid: int,
    payload: ProductIn,
    _: RequestContext = Depends(require_permission("manage_products")),
    session: Session = Depends(get_session),
):
    p = session.get(Product, pid)
    if not p:
        raise NotFound(f"product {pid} not found")
    _check_category(session, payload.category_id)
    p.name = payload.name
    p.description = payload.description
    p.price = payload.price
    p.stock = payload.stock
    p.category_id = payload.category_id
    session.add(p)
    session.flush()
    session.refresh(p)
    return p


@router.delete("/products/{pid}", status_code=204)
def delete_product(
    pid: int,
    _: RequestContext = Depends(require_permission("manage_products")),
    session: Session = Depends(get_session),
):
    p = session.get(Product, pid)
    if not p:
        raise NotFound(f"product {pid} not found")
    # order_items.product_id is ON DELETE SET NULL, history keeps its snapshot
    session.delete(p)
    return Response(status_code=204)


# ---------- Categories ----------
def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


@router.get("/categories", response_model=List[CategoryOut])
def list_categories(
    _: RequestContext = Depends(require_permission("manage_categories")),
    session: Session = Depends(get_session),
):
    return session.execute(select(Category).order_by(Category.name)).scalars().all()


@router.post("/categories", response_model=CategoryOut)
def create_category(
    payload: CategoryIn,
    _: RequestContext = Depends(require_permission("manage_categories")),
    session: Session = Depends(get_session),
):
    slug = slugify(payload.name)
    if not slug:
        raise InvalidInput("category name has no usable characters")
    if session.execute(select(Category.id).where(Category.slug == slug)).first() is not None:
        raise InvalidInput(f"category {slug!r} already exists")
    c = Category(name=payload.name.strip(), slug=slug)
    session.add(c)
    session.flush()
    return c


@router.delete("/categories/{cid}", status_code=204)
def delete_category(
    cid: int,
    _: RequestContext = Depends(require_permission("manage_categories")),
    session: Session = Depends(get_session),
):
    c = session.get(Category, cid)
    if not c:
        raise NotFound(f"category {cid} not found")
    session.delete(c)
    return Response(status_code=204)


# ---------- Orders ----------
@router.get("/orders/{oid}", response_model=OrderOut)
def order_detail(
    oid: int,
    _: RequestContext = Depends(require_permission("view_orders")),
    session: Session = Depends(get_session),
):
    order = session.get(Order, oid)
    if order is None:
        return RedirectResponse("/admin", status_code=302)
    return order


@router.post("/orders/{oid}/status")
def change_order_status(
    oid: int,
    status: str = Form(),
    _: RequestContext = Depends(require_permission("manage_orders")),
    session: Session = Depends(get_session),
):
    try:
        lifecycle.change_status(session, oid, status)
    except NotFound:
        return RedirectResponse("/admin", status_code=302)
    except (InvalidInput, Conflict, InsufficientStock) as e:
        logger.info("status change for order %d not applied: %s", oid, e)
    return RedirectResponse(f"/admin/orders/{oid}", status_code=302)


@router.post("/orders/delete/{oid}")
def delete_order(
    oid: int,
    _: RequestContext = Depends(require_permission("manage_orders")),
    session: Session = Depends(get_session),
):
    try:
        lifecycle.delete_order(session, oid)
    except NotFound:
        logger.info("order %d already gone", oid)
    return RedirectResponse("/admin", status_code=302)


# ---------- Roles ----------
def _permissions_by_id(session: Session, ids: List[int]) -> List[Permission]:
    if not ids:
        return []
    found = session.execute(select(Permission).where(Permission.id.in_(ids))).scalars().all()
    if len(found) != len(set(ids)):
        raise InvalidInput(f"unknown permission id(s): {sorted(set(ids) - {p.id for p in found})}")
    return list(found)


@router.get("/permissions", response_model=List[PermissionOut])
def list_permissions(
    _: RequestContext = Depends(require_permission("manage_roles")),
    session: Session = Depends(get_session),
):
    return session.execute(select(Permission).order_by(Permission.label)).scalars().all()


@router.get("/roles", response_model=List[RoleOut])
def list_roles(
    _: RequestContext = Depends(require_permission("manage_roles")),
    session: Session = Depends(get_session),
):
    return session.execute(select(Role).order_by(Role.name)).scalars().all()


@router.post("/roles", response_model=RoleOut)
def create_role(
    payload: RoleIn,
    _: RequestContext = Depends(require_permission("manage_roles")),
    session: Session = Depends(get_session),
):
    if session.execute(select(Role.id).where(Role.name == payload.name)).first() is not None:
        raise InvalidInput(f"role {payload.name!r} already exists")
    role = Role(name=payload.name, description=payload.description,
                permissions=_permissions_by_id(session, payload.permission_ids))
    session.add(role)
    session.flush()
    return role


@router.put("/roles/{rid}", response_model=RoleOut)
def update_role(
    rid: int,
    payload: RoleIn,
    _: RequestContext = Depends(require_permission("manage_roles")),
    session: Session = Depends(get_session),
):
    role = session.get(Role, rid)
    if role is None:
        raise NotFound(f"role {rid} not found")
    role.name = payload.name
    role.description = payload.description
    # full replacement; admins already logged in keep their old snapshot
    role.permissions = _permissions_by_id(session, payload.permission_ids)
    session.flush()
    return role


@router.delete("/roles/{rid}", status_code=204)
def delete_role(
    rid: int,
    _: RequestContext = Depends(require_permission("manage_roles")),
    session: Session = Depends(get_session),
):
    role = session.get(Role, rid)
    if role is None:
        raise NotFound(f"role {rid} not found")
    session.execute(update(AdminUser).where(AdminUser.role_id == rid).values(role_id=None))
    session.delete(role)
    return Response(status_code=204)


# ---------- Admin users ----------
@router.get("/users", response_model=List[AdminUserOut])
def list_users(
    _: RequestContext = Depends(require_permission("manage_users")),
    session: Session = Depends(get_session),
):
    return session.execute(select(AdminUser).order_by(AdminUser.id)).scalars().all()


@router.post("/users", response_model=AdminUserOut)
def create_user(
    payload: AdminUserIn,
    _: RequestContext = Depends(require_permission("manage_users")),
    session: Session = Depends(get_session),
):
    if session.execute(select(AdminUser.id).where(AdminUser.username == payload.username)).first() is not None:
        raise InvalidInput("Username already exists")
    if payload.role_id is not None and session.get(Role, payload.role_id) is None:
        raise NotFound(f"role {payload.role_id} not found")
    user = AdminUser(
        username=payload.username,
        password_hash=hash_password(payload.password),
        role_id=payload.role_id,
        is_super_admin=False,
    )
    session.add(user)
    session.flush()
    return user


@router.put("/users/{uid}/role", response_model=AdminUserOut)
def assign_role(
    uid: int,
    payload: RoleAssignIn,
    _: RequestContext = Depends(require_permission("manage_users")),
    session: Session = Depends(get_session),
):
    user = session.get(AdminUser, uid)
    if user is None:
        raise NotFound(f"admin user {uid} not found")
    if payload.role_id is not None and session.get(Role, payload.role_id) is None:
        raise NotFound(f"role {payload.role_id} not found")
    user.role_id = payload.role_id
    session.flush()
    return user


@router.delete("/users/{uid}", status_code=204)
def delete_user(
    uid: int,
    ctx: RequestContext = Depends(require_permission("manage_users")),
    session: Session = Depends(get_session),
):
    user = session.get(AdminUser, uid)
    if user is None:
        raise NotFound(f"admin user {uid} not found")
    if user.id == ctx.admin_user_id:
        raise InvalidInput("You cannot delete your own account")
    if user.is_super_admin:
        others = session.execute(
            select(func.count()).select_from(AdminUser).where(AdminUser.is_super_admin.is_(True), AdminUser.id != uid)
        ).scalar_one()
        if others == 0:
            raise InvalidInput("Cannot delete the last super admin")
    session.delete(user)
    return Response(status_code=204)


# ---------- Customers ----------
@router.get("/customers", response_model=List[CustomerStatsOut])
def list_customers(
    _: RequestContext = Depends(require_permission("manage_customers")),
    session: Session = Depends(get_session),
):
    customers = session.execute(select(Customer).order_by(Customer.created_at.desc(), Customer.id.desc())).scalars().all()
    out: List[CustomerStatsOut] = []
    for c in customers:
        order_count = session.execute(
            select(func.count()).select_from(Order).where(Order.customer_id == c.id)
        ).scalar_one()
        out.append(CustomerStatsOut(
            id=c.id, name=c.name, email=c.email, address=c.address,
            order_count=order_count,
            total_spent=confirmed_revenue(session, Order.customer_id == c.id),
        ))
    return out


@router.get("/customers/{cid}", response_model=CustomerDetailOut)
def customer_detail(
    cid: int,
    _: RequestContext = Depends(require_permission("manage_customers")),
    session: Session = Depends(get_session),
):
    customer = session.get(Customer, cid)
    if customer is None:
        return RedirectResponse("/admin/customers", status_code=302)
    orders = session.execute(
        select(Order).where(Order.customer_id == cid).order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars().all()
    return CustomerDetailOut(
        customer=CustomerOut.model_validate(customer),
        orders=[OrderSummaryOut.model_validate(o) for o in orders],
    )


@router.post("/customers/delete/{cid}")
def delete_customer(
    cid: int,
    _: RequestContext = Depends(require_permission("manage_customers")),
    session: Session = Depends(get_session),
):
    customer = session.get(Customer, cid)
    if customer is None:
        logger.info("customer %d already gone", cid)
    else:
        # orders.customer_id is ON DELETE SET NULL, reviews and loves cascade
        session.delete(customer)
        logger.info("customer %d deleted", cid)
    return RedirectResponse("/admin/customers", status_code=302)


# ---------- Reviews ----------
@router.get("/reviews", response_model=ReviewPageOut)
def list_reviews(
    page: int = 1,
    search: str = "",
    rating: Optional[int] = None,
    _: RequestContext = Depends(require_permission("manage_reviews")),
    session: Session = Depends(get_session),
):
    criteria = []
    if search:
        pattern = f"%{search.lower()}%"
        criteria.append(func.lower(Product.name).like(pattern) | func.lower(Customer.name).like(pattern))
    if rating is not None:
        criteria.append(ProductReview.rating == rating)

    base = (
        select(ProductReview)
        .join(Product, ProductReview.product_id == Product.id)
        .join(Customer, ProductReview.customer_id == Customer.id)
        .where(*criteria)
    )
    total = session.execute(select(func.count()).select_from(base.subquery())).scalar_one()
    page = max(1, page)
    rows = session.execute(
        base.order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
        .limit(REVIEWS_PER_PAGE)
        .offset((page - 1) * REVIEWS_PER_PAGE)
    ).scalars().all()
    return ReviewPageOut(
        reviews=[ReviewOut.model_validate(r) for r in rows],
        page=page,
        total_pages=_pages(total, REVIEWS_PER_PAGE),
        total_reviews=total,
    )


@router.post("/reviews/delete/{rid}")
def delete_review(
    rid: int,
    _: RequestContext = Depends(require_permission("manage_reviews")),
    session: Session = Depends(get_session),
):
    try:
        reviews.delete_review(session, rid)
    except NotFound:
        logger.info("review %d already gone", rid)
    return RedirectResponse("/admin/reviews", status_code=302)
