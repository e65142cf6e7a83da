import logging
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from .db import transaction
from .errors import EmptyCart, InsufficientStock, InvalidInput, NotFound, Unauthenticated
from .inventory import lock_products, merge_lines
from .metrics import ORDERS_CREATED, ORDERS_FAILED
from .models import Customer, Order, OrderItem

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def place_order(
    session: Session,
    customer_id: Optional[int],
    cart: Iterable[Tuple[int, int]],
    address: Optional[str] = None,
) -> Order:
    """
    Turn a cart of (product_id, quantity) pairs into a pending Order with its items.

    Every product row is locked while its stock is compared with the requested
    quantity; one short line aborts the whole checkout and nothing is written.
    Stock itself is left alone here, it is reserved when an admin confirms the order.
    """
    if customer_id is None:
        raise Unauthenticated()
    lines = list(cart)
    if not lines:
        ORDERS_FAILED.labels(reason="empty_cart").inc()
        raise EmptyCart("cart is empty")
    if any(qty < 1 for _, qty in lines):
        raise InvalidInput("quantities must be at least 1")

    try:
        with transaction(session):
            customer = session.get(Customer, customer_id)
            if customer is None:
                raise Unauthenticated()

            combined = merge_lines(lines)
            products = lock_products(session, combined)
            if len(products) != len(combined):
                missing = sorted(set(combined) - set(products))
                raise NotFound(f"unknown product(s): {missing}")

            total = Decimal("0.00")
            items = []
            for pid, qty in combined.items():
                p = products[pid]
                if p.stock < qty:
                    raise InsufficientStock(pid, p.stock, qty)
                total += p.price * qty
                items.append(OrderItem(product_id=pid, product_name=p.name, price=p.price, quantity=qty))

            order = Order(
                customer_id=customer.id,
                customer_name=customer.name,
                customer_email=customer.email,
                customer_address=(address or "").strip() or customer.address,
                total=total.quantize(CENT),
                status="pending",
                items=items,
            )
            session.add(order)
            session.flush()
    except InsufficientStock as e:
        ORDERS_FAILED.labels(reason="insufficient_stock").inc()
        logger.warning("checkout rejected for customer %s: %s", customer_id, e)
        raise
    except NotFound:
        ORDERS_FAILED.labels(reason="missing_product").inc()
        raise

    ORDERS_CREATED.inc()
    logger.info("order %d placed by customer %d, total %s", order.id, customer_id, order.total)
    return order
