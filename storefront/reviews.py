"""
Product reviews and likes ("loves").

A customer reviews a product at most once and may edit or delete that review
later; moderators can delete any review. A love is a per-customer toggle.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import transaction
from .errors import InvalidInput, NotFound, Unauthenticated
from .models import Customer, Product, ProductLove, ProductReview

logger = logging.getLogger(__name__)

MIN_RATING, MAX_RATING = 1, 5


def _check_rating(rating: int) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidInput(f"rating must be between {MIN_RATING} and {MAX_RATING}")


def _require_parties(session: Session, product_id: int, customer_id: int) -> Product:
    if session.get(Customer, customer_id) is None:
        raise Unauthenticated()
    p = session.get(Product, product_id)
    if p is None:
        raise NotFound(f"product {product_id} not found")
    return p


def has_reviewed(session: Session, product_id: int, customer_id: int) -> bool:
    return session.execute(
        select(ProductReview.id).where(ProductReview.product_id == product_id, ProductReview.customer_id == customer_id)
    ).first() is not None


def has_loved(session: Session, product_id: int, customer_id: int) -> bool:
    return session.execute(
        select(ProductLove.id).where(ProductLove.product_id == product_id, ProductLove.customer_id == customer_id)
    ).first() is not None


def add_review(session: Session, product_id: int, customer_id: int, rating: int, text: str = "") -> ProductReview:
    """Raises InvalidInput for a bad rating or a second review, NotFound for an unknown product."""
    _check_rating(rating)
    try:
        with transaction(session):
            _require_parties(session, product_id, customer_id)
            if has_reviewed(session, product_id, customer_id):
                raise InvalidInput("product already reviewed")
            review = ProductReview(
                product_id=product_id, customer_id=customer_id, rating=rating, review_text=(text or "").strip(),
            )
            session.add(review)
            session.flush()
    except IntegrityError as e:
        # a concurrent request inserted the same (product, customer) pair
        raise InvalidInput("product already reviewed") from e
    logger.info("customer %d reviewed product %d (%d stars)", customer_id, product_id, rating)
    return review


def update_review(
    session: Session, review_id: int, customer_id: int, rating: int, text: str = ""
) -> ProductReview:
    """Only the author may edit; someone else's review id is reported as NotFound."""
    _check_rating(rating)
    with transaction(session):
        review = session.get(ProductReview, review_id)
        if review is None or review.customer_id != customer_id:
            raise NotFound(f"review {review_id} not found")
        review.rating = rating
        review.review_text = (text or "").strip()
    return review


def delete_review(session: Session, review_id: int, customer_id: Optional[int] = None) -> None:
    """Delete a review; pass customer_id to restrict the delete to that author's reviews."""
    stmt = delete(ProductReview).where(ProductReview.id == review_id)
    if customer_id is not None:
        stmt = stmt.where(ProductReview.customer_id == customer_id)
    with transaction(session):
        res = session.execute(stmt)
        if res.rowcount != 1:
            raise NotFound(f"review {review_id} not found")
    logger.info("review %d deleted", review_id)


def toggle_love(session: Session, product_id: int, customer_id: int) -> bool:
    """Flip the customer's love for a product. Returns whether it is loved afterwards."""
    try:
        with transaction(session):
            _require_parties(session, product_id, customer_id)
            res = session.execute(
                delete(ProductLove).where(ProductLove.product_id == product_id, ProductLove.customer_id == customer_id)
            )
            if res.rowcount:
                return False
            session.add(ProductLove(product_id=product_id, customer_id=customer_id))
            session.flush()
    except IntegrityError:
        # double click raced us to the insert; the love is there either way
        logger.debug("love for product %d by customer %d already recorded", product_id, customer_id)
    return True


def rating_summary(session: Session, product_id: int):
    """(review count, average rating rounded to one decimal, love count)."""
    count, avg = session.execute(
        select(func.count(ProductReview.id), func.coalesce(func.avg(ProductReview.rating), 0))
        .where(ProductReview.product_id == product_id)
    ).one()
    loves = session.execute(
        select(func.count(ProductLove.id)).where(ProductLove.product_id == product_id)
    ).scalar_one()
    return count, Decimal(str(avg)).quantize(Decimal("0.1")), loves
