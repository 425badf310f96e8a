import time
import uuid
import logging
from typing import List
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .models import (
    AddToCartRequest, CartView, CheckoutResponse, ContactDetails, LoginRequest,
    Order, Product, SetQuantityRequest, SignupRequest, TokenResponse,
)
from .settings import settings, Settings, DATABASE_URL
from .auth import get_current_user, get_settings, UserContext
from .admin import router as admin_router
from .errors import AuthError, StorefrontError, UntrustedEventError
from .payments import PaymentGateway, get_gateway, set_gateway, StripeGateway
from .rate_limit import limiter
from .storage import MemoryStore, Store, get_store, set_store
from . import accounts, cart, catalog, checkout, db, orders


logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    # Startup: pick the store
    if DATABASE_URL:
        await db.init_pool(DATABASE_URL)
        set_store(db.PostgresStore())
        logger.info("[startup] Database pool initialized successfully")
    else:
        set_store(MemoryStore())
        logger.warning("[startup] No DATABASE_URL configured - using in-memory store")

    set_gateway(StripeGateway.from_settings(settings))
    if not settings.stripe_secret_key:
        logger.warning("[startup] STOREFRONT_STRIPE_SECRET_KEY not set - checkout will fail at the gateway step")

    yield

    # Shutdown: close gateway client and store
    await get_gateway().close()
    await get_store().close()


app = FastAPI(
    title="Terra Storefront",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include admin router
app.include_router(admin_router)

# CORS configuration from settings
# If no origins configured, allow localhost for development
allowed_origins = settings.allowed_origins if settings.allowed_origins else [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


def _get_or_create_request_id(request: Request) -> str:
    """Get request ID from header or generate one."""
    return request.headers.get("X-Request-Id") or str(uuid.uuid4())


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Tags each request with an X-Request-Id and logs status and duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = _get_or_create_request_id(request)
        request.state.request_id = request_id
        start_time = time.time()

        response = await call_next(request)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "[request] %s %s status=%s duration_ms=%s request_id=%s",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        response.headers["X-Request-Id"] = request_id
        return response


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    if exc.status_code >= 500:
        logger.error("[error] %s: %s", exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Server version for health checks
SERVER_VERSION = "1.0.0"

@app.get("/health")
def health():
    """
    Health check endpoint - no authentication required.
    Used by load balancers and orchestrators.
    """
    return {
        "status": "ok",
        "version": SERVER_VERSION,
        "timestamp": int(time.time()),
        "database": bool(DATABASE_URL),
        "payments_configured": bool(settings.stripe_secret_key),
    }


# --- Accounts ---


@app.post("/api/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.auth_rate_limit)
async def signup(
    request: Request,  # Required for rate limiter
    body: SignupRequest,
    store: Store = Depends(get_store),
    config: Settings = Depends(get_settings),
):
    """Register and receive a session token. 409 if username or email is taken."""
    return await accounts.signup(store, body, config)


@app.post("/api/login", response_model=TokenResponse)
@limiter.limit(settings.auth_rate_limit)
async def login(
    request: Request,  # Required for rate limiter
    body: LoginRequest,
    store: Store = Depends(get_store),
    config: Settings = Depends(get_settings),
):
    """Exchange credentials for a session token. Unknown user and wrong password look the same."""
    return await accounts.login(store, body, config)


# --- Catalog (public) ---


@app.get("/api/products", response_model=List[Product])
async def list_products(store: Store = Depends(get_store)):
    return await catalog.list_products(store)


@app.get("/api/products/{product_id}", response_model=Product)
async def get_product(product_id: int, store: Store = Depends(get_store)):
    return await catalog.get_product(store, product_id)


# --- Cart ---


@app.get("/api/cart", response_model=CartView)
async def get_cart(
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Cart lines with live catalog prices and the current total."""
    return await cart.list_cart(store, user)


@app.post("/api/cart", response_model=CartView)
async def add_to_cart(
    body: AddToCartRequest,
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    return await cart.add(store, user, body.product_id, body.quantity)


@app.put("/api/cart/{product_id}", response_model=CartView)
async def set_cart_quantity(
    product_id: int,
    body: SetQuantityRequest,
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    """Overwrite a line's quantity; zero or less removes the line."""
    return await cart.set_quantity(store, user, product_id, body.quantity)


@app.delete("/api/cart/{product_id}", response_model=CartView)
async def remove_from_cart(
    product_id: int,
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    return await cart.remove(store, user, product_id)


# --- Checkout & orders ---


@app.post("/api/checkout", response_model=CheckoutResponse)
async def start_checkout(
    body: ContactDetails,
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    config: Settings = Depends(get_settings),
):
    """
    Turn the cart into a pending order and return the hosted payment URL.

    On 502 the order was created and left pending; its id is in the body.
    """
    return await checkout.initiate_checkout(store, gateway, user, body, config)


@app.get("/api/orders", response_model=List[Order])
async def my_orders(
    user: UserContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    return await orders.list_user_orders(store, user)


@app.post("/api/webhook")
async def payment_webhook(
    request: Request,
    store: Store = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Payment gateway callback. Authenticated by signature, not by session.

    Every authenticated event is acknowledged, including replays and events
    for unknown orders, so the gateway does not retry them.
    """
    payload = await request.body()
    try:
        outcome = await checkout.confirm_payment(
            store,
            gateway,
            payload,
            request.headers.get("Stripe-Signature"),
        )
    except UntrustedEventError as e:
        logger.warning("[webhook] Rejected event: %s", e.detail)
        raise
    return {"received": True, "outcome": outcome.value}


def cli():
    import uvicorn
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

if __name__ == "__main__":
    cli()
