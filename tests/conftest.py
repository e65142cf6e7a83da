import os
import tempfile

# must be set before storefront.db builds its engine; TEST_DATABASE_URL points the
# suite at a throwaway Postgres database instead of a temp SQLite file
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL") or "sqlite:///" + os.path.join(_DB_DIR, "test.db")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SESSION_SECRET", "test-secret")
os.environ.setdefault("ADMIN_PASSWORD", "admin123")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront.db import SessionLocal, engine, init_db
from storefront.models import Base, Customer, Order, Permission, Product, Role
from storefront.security import hash_password


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture
def session():
    s = SessionLocal()
    yield s
    s.close()


@pytest.fixture
def make_product(session):
    def make(name="Linen Shirt", price="19.99", stock=5):
        p = Product(name=name, price=Decimal(price), stock=stock)
        session.add(p)
        session.commit()
        return p
    return make


@pytest.fixture
def make_customer(session):
    def make(name="Nora", email="nora@example.com", password="secret1", address="1 Palm Street"):
        c = Customer(name=name, email=email, address=address, password_hash=hash_password(password))
        session.add(c)
        session.commit()
        return c
    return make


@pytest.fixture
def make_role(session):
    def make(name, keys):
        perms = [p for p in session.query(Permission).all() if p.key in keys]
        role = Role(name=name, permissions=perms)
        session.add(role)
        session.commit()
        return role
    return make


@pytest.fixture
def stock_of():
    def read(product_id):
        with SessionLocal() as s:
            return s.get(Product, product_id).stock
    return read


@pytest.fixture
def order_count():
    def count():
        with SessionLocal() as s:
            return s.query(Order).count()
    return count


@pytest.fixture
def client():
    from storefront.main import app
    return TestClient(app)
