"""
Order status transitions and their effect on stock.

Any status may move to any other. What happens to inventory depends only on
whether the old and the new status belong to CONFIRMED_STATUSES:

    entering the set   -> reserve (decrement) every item's quantity
    leaving the set    -> release (increment) every item's quantity
    otherwise          -> nothing
"""
import enum
import logging
from typing import List, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .db import transaction
from . import inventory
from .errors import Conflict, InsufficientStock, InvalidInput, NotFound
from .metrics import ORDER_TRANSITIONS, ORDER_TRANSITION_FAILED, ORDERS_DELETED
from .models import Order, OrderItem

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
CONFIRMED_STATUSES = frozenset({"processing", "shipped", "delivered"})


class StockEffect(enum.Enum):
    NONE = "none"
    RESERVE = "reserve"
    RELEASE = "release"


def is_confirmed(status: str) -> bool:
    return status in CONFIRMED_STATUSES


def stock_effect(old_status: str, new_status: str) -> StockEffect:
    was, now = is_confirmed(old_status), is_confirmed(new_status)
    if not was and now:
        return StockEffect.RESERVE
    if was and not now:
        return StockEffect.RELEASE
    return StockEffect.NONE


def _lock_order(session: Session, order_id: int) -> Order:
    order = session.execute(
        select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise NotFound(f"order {order_id} not found")
    return order


def _item_lines(session: Session, order_id: int) -> List[Tuple[int, int]]:
    rows = session.execute(
        select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
    ).all()
    return [(r[0], r[1]) for r in rows]


def change_status(session: Session, order_id: int, new_status: str) -> Order:
    """
    Move an order to new_status, reserving or releasing stock in the same transaction.

    Raises NotFound, InvalidInput (unknown status), Conflict (someone else changed
    the status first) or InsufficientStock (a reservation would drive stock negative).
    In every failure case nothing is changed, the status included.
    """
    if new_status not in ORDER_STATUSES:
        raise InvalidInput(f"unknown order status {new_status!r}")

    try:
        with transaction(session):
            order = _lock_order(session, order_id)
            old_status = order.status

            res = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == old_status)
                .values(status=new_status)
            )
            if res.rowcount == 0:
                raise Conflict(f"order {order_id} is no longer {old_status!r}")

            effect = stock_effect(old_status, new_status)
            if effect is StockEffect.RESERVE:
                inventory.reserve(session, _item_lines(session, order_id))
            elif effect is StockEffect.RELEASE:
                inventory.release(session, _item_lines(session, order_id))
    except InsufficientStock as e:
        ORDER_TRANSITION_FAILED.labels(reason="insufficient_stock").inc()
        logger.warning("order %d: %s", order_id, e)
        raise
    except Conflict as e:
        ORDER_TRANSITION_FAILED.labels(reason="conflict").inc()
        logger.warning("order %d: %s", order_id, e)
        raise

    ORDER_TRANSITIONS.labels(old_status, new_status).inc()
    logger.info("order %d: %s -> %s (%s)", order_id, old_status, new_status, effect.value)
    return order


def delete_order(session: Session, order_id: int) -> None:
    """Delete an order and its items, releasing stock first if it was confirmed."""
    with transaction(session):
        order = _lock_order(session, order_id)
        released = is_confirmed(order.status)
        if released:
            inventory.release(session, _item_lines(session, order_id))
        session.delete(order)
        session.flush()

    ORDERS_DELETED.inc()
    logger.info("order %d deleted (status %s, stock released: %s)", order_id, order.status, released)
