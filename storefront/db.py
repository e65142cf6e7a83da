import os
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, select, text
from sqlalchemy.orm import sessionmaker, Session

logger = logging.getLogger(__name__)

DB_USER = os.getenv("DB_USER", "app")
DB_PASS = os.getenv("DB_PASS", "app")
DB_NAME = os.getenv("DB_NAME", "appdb")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_SCHEMA = os.getenv("DB_SCHEMA", "storefront")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

# Use psycopg3; set search_path so unqualified tables use our schema.
# DATABASE_URL wins when set (hosted Postgres, or sqlite for tests).
options = f"-csearch_path={DB_SCHEMA},public"
DATABASE_URL = os.getenv("DATABASE_URL") or (
    f"postgresql+psycopg://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    f"?options={options}"
)

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False}, future=True)

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):
        # ON DELETE SET NULL / CASCADE only fire with this on
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA busy_timeout=10000")
        cur.close()
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True, future=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def init_db():
    """
    Ensure the schema exists, create tables (idempotent) and seed the
    permission keys plus a super admin when no admin account exists yet.
    Called once at application startup.
    """
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            # Quote the schema to avoid edge cases with names
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{DB_SCHEMA}"'))
    # Import here to avoid circulars
    from .models import Base, Permission, AdminUser  # noqa
    from .permissions import DEFAULT_PERMISSIONS
    from .security import hash_password
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as s, transaction(s):
        existing = {p.key: p for p in s.execute(select(Permission)).scalars()}
        for key, label in DEFAULT_PERMISSIONS:
            if key in existing:
                existing[key].label = label
            else:
                s.add(Permission(key=key, label=label))

        if s.execute(select(AdminUser.id).limit(1)).first() is None:
            s.add(AdminUser(username="admin", password_hash=hash_password(ADMIN_PASSWORD), is_super_admin=True))
            logger.info("seeded default super admin 'admin'")


def get_session():
    """
    FastAPI dependency: yields a DB session, commits on success, rolls back on error.
    """
    s = SessionLocal()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


@contextmanager
def transaction(session: Session):
    """
    One all-or-nothing unit of work on an existing session: commits when the
    block finishes, rolls everything back (row locks included) when it raises.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
