import os
import time
import logging

from fastapi import FastAPI, APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.sessions import SessionMiddleware

from .db import init_db
from .errors import Conflict, Forbidden, InsufficientStock, InvalidInput, NotFound, StorefrontError, Unauthenticated
from .metrics import REQS, LAT
from .routers import admin, auth, orders, shop

APP_NAME = "storefront"
LISTEN_PORT = int(os.getenv("LISTEN_PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SESSION_SECRET = os.getenv("SESSION_SECRET", "")
SESSION_MAX_AGE = 7 * 24 * 60 * 60

# Optional prefix for routes. Leave empty ("") if your Gateway strips /api/storefront.
# Redirect targets are always unprefixed, so a non-stripping gateway must rewrite Location.
API_PREFIX = os.getenv("API_PREFIX", "").strip()
if API_PREFIX and not API_PREFIX.startswith("/"):
    API_PREFIX = "/" + API_PREFIX
API_PREFIX = API_PREFIX.rstrip("/")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

if not SESSION_SECRET:
    logger.warning("SESSION_SECRET is not set; using an insecure development secret")
    SESSION_SECRET = "dev-insecure-secret"

app = FastAPI(title=APP_NAME)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, max_age=SESSION_MAX_AGE, same_site="lax")

router = APIRouter(prefix=API_PREFIX)
router.include_router(shop.router)
router.include_router(orders.router)
router.include_router(auth.router)
router.include_router(admin.router)


# ---- Startup: ensure schema + tables + seed rows exist (idempotent) ----
@app.on_event("startup")
def on_startup():
    init_db()


# ---- Prometheus metrics ----
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    REQS.labels(APP_NAME, request.url.path, request.method, response.status_code).inc()
    LAT.labels(APP_NAME, request.url.path, request.method).observe(time.time() - start)
    return response


# ---- Error mapping ----
@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return RedirectResponse(exc.login_url, status_code=302)


@app.exception_handler(Forbidden)
async def forbidden_handler(request: Request, exc: Forbidden):
    return PlainTextResponse("Forbidden", status_code=403)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    status_code = 409 if isinstance(exc, (Conflict, InsufficientStock)) else 400
    return JSONResponse({"detail": str(exc)}, status_code=status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return PlainTextResponse("Server error", status_code=500)


@app.get("/health", response_class=PlainTextResponse)
def health():
    return "ok"


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("storefront.main:app", host="0.0.0.0", port=LISTEN_PORT)
