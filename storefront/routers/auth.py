import logging
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Form, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import reviews
from ..db import get_session
from ..errors import InvalidInput, NotFound, Unauthenticated
from ..models import Customer, Order, ProductReview
from ..schemas import AccountIn, CustomerOut, OrderSummaryOut, PasswordChangeIn, ReviewOut
from ..security import hash_password, verify_password
from ..sessions import RequestContext, SessionStore
from ..deps import CUSTOMER_LOGIN_URL, get_store, require_customer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

MIN_PASSWORD_LENGTH = 6
DUPLICATE_EMAIL = "An account with this email already exists"


def _back(path: str, error: str) -> RedirectResponse:
    return RedirectResponse(f"{path}?{urlencode({'error': error})}", status_code=302)


def _current_customer(session: Session, ctx: RequestContext) -> Customer:
    customer = session.get(Customer, ctx.customer_id)
    if customer is None:
        raise Unauthenticated(CUSTOMER_LOGIN_URL)
    return customer


def _email_taken(session: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Customer.id).where(Customer.email == email)
    if exclude_id is not None:
        stmt = stmt.where(Customer.id != exclude_id)
    return session.execute(stmt).first() is not None


@router.get("/login")
def login_page(error: Optional[str] = None):
    return {"login": CUSTOMER_LOGIN_URL, "error": error}


@router.get("/register")
def register_page(error: Optional[str] = None):
    return {"register": "/auth/register", "login": CUSTOMER_LOGIN_URL, "error": error}


@router.post("/register")
def register(
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    name, email = name.strip(), email.strip()
    if not name or not email or not password or not confirm_password:
        return _back("/auth/register", "All fields are required")
    if password != confirm_password:
        return _back("/auth/register", "Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        return _back("/auth/register", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if _email_taken(session, email):
        return _back("/auth/register", DUPLICATE_EMAIL)

    customer = Customer(name=name, email=email, password_hash=hash_password(password))
    session.add(customer)
    try:
        session.flush()
    except IntegrityError:
        # lost a race with a concurrent registration for the same email
        session.rollback()
        return _back("/auth/register", DUPLICATE_EMAIL)
    store.login_customer(customer.id, customer.name)
    logger.info("customer %d registered", customer.id)
    return RedirectResponse("/", status_code=302)


@router.post("/login")
def login(
    email: str = Form(""),
    password: str = Form(""),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    customer = session.execute(select(Customer).where(Customer.email == email.strip())).scalar_one_or_none()
    if customer is None or not verify_password(password, customer.password_hash):
        logger.warning("failed customer login for %r", email)
        return _back("/auth/login", "Invalid email or password")
    store.login_customer(customer.id, customer.name)
    return RedirectResponse("/", status_code=302)


@router.get("/logout")
def logout(store: SessionStore = Depends(get_store)):
    store.logout_customer()
    return RedirectResponse("/", status_code=302)


@router.get("/account", response_model=CustomerOut)
def account(ctx: RequestContext = Depends(require_customer), session: Session = Depends(get_session)):
    return _current_customer(session, ctx)


@router.put("/account", response_model=CustomerOut)
def update_account(
    payload: AccountIn,
    ctx: RequestContext = Depends(require_customer),
    store: SessionStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    customer = _current_customer(session, ctx)
    name, email = payload.name.strip(), payload.email.strip()
    if not name or not email:
        raise InvalidInput("Name and email are required")
    if _email_taken(session, email, exclude_id=customer.id):
        raise InvalidInput("This email is already in use by another account")
    customer.name = name
    customer.email = email
    customer.address = payload.address
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise InvalidInput("This email is already in use by another account") from e
    store.login_customer(customer.id, customer.name)
    return customer


@router.put("/account/password", status_code=204)
def change_password(
    payload: PasswordChangeIn,
    ctx: RequestContext = Depends(require_customer),
    session: Session = Depends(get_session),
):
    customer = _current_customer(session, ctx)
    if not payload.current_password or not payload.new_password or not payload.confirm_password:
        raise InvalidInput("All password fields are required")
    if not verify_password(payload.current_password, customer.password_hash):
        logger.warning("customer %d failed the current-password check", customer.id)
        raise InvalidInput("Current password is incorrect")
    if payload.new_password != payload.confirm_password:
        raise InvalidInput("New passwords do not match")
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    customer.password_hash = hash_password(payload.new_password)
    logger.info("customer %d changed their password", customer.id)
    return Response(status_code=204)


@router.get("/orders", response_model=List[OrderSummaryOut])
def my_orders(ctx: RequestContext = Depends(require_customer), session: Session = Depends(get_session)):
    return session.execute(
        select(Order)
        .where(Order.customer_id == ctx.customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars().all()


# ---------- Own reviews ----------
@router.get("/reviews", response_model=List[ReviewOut])
def my_reviews(ctx: RequestContext = Depends(require_customer), session: Session = Depends(get_session)):
    return session.execute(
        select(ProductReview)
        .where(ProductReview.customer_id == ctx.customer_id)
        .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
    ).scalars().all()


@router.post("/reviews/edit/{rid}")
def edit_review(
    rid: int,
    rating: int = Form(0),
    review_text: str = Form(""),
    ctx: RequestContext = Depends(require_customer),
    session: Session = Depends(get_session),
):
    try:
        reviews.update_review(session, rid, ctx.customer_id, rating, review_text)
    except (InvalidInput, NotFound) as e:
        logger.info("review %d not updated: %s", rid, e)
    return RedirectResponse("/auth/reviews", status_code=302)


@router.post("/reviews/delete/{rid}")
def delete_review(
    rid: int,
    ctx: RequestContext = Depends(require_customer),
    session: Session = Depends(get_session),
):
    try:
        reviews.delete_review(session, rid, customer_id=ctx.customer_id)
    except NotFound as e:
        logger.info("review %d not deleted: %s", rid, e)
    return RedirectResponse("/auth/reviews", status_code=302)
