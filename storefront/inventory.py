"""
Inventory ledger: the only code that moves ``products.stock``.

Both helpers run inside the caller's transaction. Rows are locked with
``SELECT ... FOR UPDATE`` in ascending product id so two transactions that
touch the same products always queue in the same order.
"""
import logging
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InsufficientStock
from .models import Product

logger = logging.getLogger(__name__)

Line = Tuple[Optional[int], int]


def merge_lines(lines: Iterable[Line]) -> Dict[int, int]:
    """Combine duplicate products; lines whose product was deleted (None) are dropped."""
    combined: Dict[int, int] = {}
    for pid, qty in lines:
        if pid is None:
            continue
        combined[pid] = combined.get(pid, 0) + qty
    return dict(sorted(combined.items()))


def lock_products(session: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
    """
    Read the given products with an exclusive row lock.
    Returns {product_id: Product}. Missing products are omitted.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = session.execute(
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    return {p.id: p for p in rows}


def reserve(session: Session, lines: Iterable[Line]) -> None:
    """
    Decrement stock for every line.
    Raises InsufficientStock before touching anything if one product falls short;
    the caller's transaction must then be rolled back.
    """
    combined = merge_lines(lines)
    products = lock_products(session, combined)

    for pid, qty in combined.items():
        p = products.get(pid)
        if p is not None and p.stock < qty:
            raise InsufficientStock(pid, p.stock, qty)

    for pid, qty in combined.items():
        if pid not in products:
            continue
        # stock never drops below zero, even where FOR UPDATE is a no-op
        res = session.execute(
            update(Product)
            .where(Product.id == pid, Product.stock >= qty)
            .values(stock=Product.stock - qty)
        )
        if res.rowcount != 1:
            current = session.execute(select(Product.stock).where(Product.id == pid)).scalar_one()
            raise InsufficientStock(pid, current, qty)
        logger.debug("reserved %d of product %d", qty, pid)


def release(session: Session, lines: Iterable[Line]) -> None:
    """Increment stock for every line whose product still exists."""
    combined = merge_lines(lines)
    products = lock_products(session, combined)
    for pid, qty in combined.items():
        if pid not in products:
            continue
        session.execute(
            update(Product)
            .where(Product.id == pid)
            .values(stock=Product.stock + qty)
        )
        logger.debug("released %d of product %d", qty, pid)
