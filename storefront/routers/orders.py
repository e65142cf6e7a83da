from typing import Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..checkout import place_order
from ..db import get_session
from ..errors import EmptyCart, InsufficientStock, NotFound
from ..models import Order
from ..schemas import CartOut, OrderOut
from ..sessions import RequestContext, SessionStore
from ..deps import get_context, get_store, require_customer
from .shop import build_cart

router = APIRouter(prefix="/orders")


@router.get("/checkout", response_model=CartOut)
def checkout_page(ctx: RequestContext = Depends(require_customer), session: Session = Depends(get_session)):
    if not ctx.cart:
        return RedirectResponse("/cart", status_code=302)
    return build_cart(session, ctx)


@router.post("/checkout")
def checkout(
    address: Optional[str] = Form(None),
    ctx: RequestContext = Depends(require_customer),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    try:
        order = place_order(
            session,
            ctx.customer_id,
            [(line.product_id, line.quantity) for line in ctx.cart],
            address=address,
        )
    except (EmptyCart, InsufficientStock, NotFound):
        # cart stays as it was so the customer can adjust and retry
        return RedirectResponse("/cart", status_code=302)

    store.clear_cart()
    return RedirectResponse(f"/orders/confirmation/{order.id}", status_code=302)


@router.get("/confirmation/{oid}", response_model=OrderOut)
def confirmation(oid: int, ctx: RequestContext = Depends(get_context), session: Session = Depends(get_session)):
    order = session.get(Order, oid)
    if order is None:
        raise NotFound(f"order {oid} not found")
    # hidden from other logged-in customers
    if ctx.customer_id and order.customer_id and order.customer_id != ctx.customer_id:
        raise NotFound(f"order {oid} not found")
    return order
