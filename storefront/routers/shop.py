import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import reviews
from ..cart import add_line, remove_line, update_line
from ..db import get_session
from ..errors import InvalidInput, NotFound
from ..models import Category, Product, ProductReview
from ..schemas import (
    CartItemOut, CartOut, CategoryOut, HomeOut, ProductDetailOut, ProductOut, ReviewOut,
)
from ..sessions import RequestContext, SessionStore
from ..deps import get_context, get_store, require_customer

FEATURED_LIMIT = 6
RELATED_LIMIT = 4

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HomeOut)
def home(session: Session = Depends(get_session)):
    categories = session.execute(select(Category).order_by(Category.name)).scalars().all()
    featured = session.execute(
        select(Product)
        .where(Product.stock > 0)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(FEATURED_LIMIT)
    ).scalars().all()
    return HomeOut(
        categories=[CategoryOut.model_validate(c) for c in categories],
        featured=[ProductOut.model_validate(p) for p in featured],
    )


@router.get("/products", response_model=List[ProductOut])
def list_products(category: Optional[str] = None, session: Session = Depends(get_session)):
    stmt = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
    if category:
        stmt = stmt.join(Category, Product.category_id == Category.id).where(Category.slug == category)
    return session.execute(stmt).scalars().all()


@router.get("/products/{pid}", response_model=ProductDetailOut)
def get_product(
    pid: int,
    ctx: RequestContext = Depends(get_context),
    session: Session = Depends(get_session),
):
    p = session.get(Product, pid)
    if not p:
        raise NotFound(f"product {pid} not found")

    related = []
    if p.category_id is not None:
        related = session.execute(
            select(Product)
            .where(Product.category_id == p.category_id, Product.id != p.id)
            .order_by(Product.id)
            .limit(RELATED_LIMIT)
        ).scalars().all()
    product_reviews = session.execute(
        select(ProductReview)
        .where(ProductReview.product_id == pid)
        .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
    ).scalars().all()
    total, avg, loves = reviews.rating_summary(session, pid)

    detail = ProductDetailOut(
        product=ProductOut.model_validate(p),
        related=[ProductOut.model_validate(r) for r in related],
        reviews=[ReviewOut.model_validate(r) for r in product_reviews],
        total_reviews=total,
        avg_rating=avg,
        love_count=loves,
    )
    if ctx.customer_id is not None:
        detail.loved = reviews.has_loved(session, pid, ctx.customer_id)
        detail.reviewed = reviews.has_reviewed(session, pid, ctx.customer_id)
    return detail


@router.post("/products/{pid}/review")
def review_product(
    pid: int,
    rating: int = Form(0),
    review_text: str = Form(""),
    ctx: RequestContext = Depends(require_customer),
    session: Session = Depends(get_session),
):
    try:
        reviews.add_review(session, pid, ctx.customer_id, rating, review_text)
    except InvalidInput as e:
        logger.info("review of product %d by customer %d refused: %s", pid, ctx.customer_id, e)
    return RedirectResponse(f"/products/{pid}", status_code=302)


@router.post("/products/{pid}/love")
def love_product(
    pid: int,
    ctx: RequestContext = Depends(require_customer),
    session: Session = Depends(get_session),
):
    reviews.toggle_love(session, pid, ctx.customer_id)
    return RedirectResponse(f"/products/{pid}", status_code=302)


@router.get("/categories", response_model=List[CategoryOut])
def list_categories(session: Session = Depends(get_session)):
    return session.execute(select(Category).order_by(Category.name)).scalars().all()


# ---------- Cart ----------
def build_cart(session: Session, ctx: RequestContext) -> CartOut:
    """Join the session cart with current product rows; vanished products are skipped."""
    items: List[CartItemOut] = []
    total = Decimal("0.00")
    for line in ctx.cart:
        p = session.get(Product, line.product_id)
        if p is None:
            continue
        subtotal = p.price * line.quantity
        total += subtotal
        items.append(CartItemOut(
            product_id=p.id, name=p.name, price=p.price,
            quantity=line.quantity, stock=p.stock, subtotal=subtotal,
        ))
    return CartOut(items=items, total=total)


@router.get("/cart", response_model=CartOut)
def view_cart(ctx: RequestContext = Depends(get_context), session: Session = Depends(get_session)):
    return build_cart(session, ctx)


@router.post("/cart/add")
def add_to_cart(
    product_id: int = Form(alias="productId"),
    quantity: int = Form(1),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    p = session.get(Product, product_id)
    if p is None or p.stock <= 0:
        return RedirectResponse("/", status_code=302)
    store.save_cart(add_line(store.cart(), product_id, quantity, p.stock))
    return RedirectResponse("/cart", status_code=302)


@router.post("/cart/update")
def update_cart(
    product_id: int = Form(alias="productId"),
    quantity: int = Form(),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    stock = None
    if quantity > 0:
        p = session.get(Product, product_id)
        stock = p.stock if p is not None else None
    store.save_cart(update_line(store.cart(), product_id, quantity, stock))
    return RedirectResponse("/cart", status_code=302)


@router.post("/cart/remove")
def remove_from_cart(product_id: int = Form(alias="productId"), store: SessionStore = Depends(get_store)):
    store.save_cart(remove_line(store.cart(), product_id))
    return RedirectResponse("/cart", status_code=302)
