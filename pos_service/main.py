import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import catalog, changes, schemas
from .auth import STAFF_ROLES, CallerIdentity, ensure_role, resolve_identity, resolve_optional_identity
from .config import Settings
from .database import Database
from .errors import AuthenticationError, register_exception_handlers
from .item_status import ItemStatusEngine
from .order_status import OrderStatusEngine
from .payments import PaymentService
from .repository import OrderRepository, parse_id
from .ticket import build_ticket_text

logger = logging.getLogger(__name__)

router = APIRouter()


# Dependencies
def get_db(request: Request):
    db = request.app.state.db.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_identity(request: Request) -> CallerIdentity:
    return resolve_identity(request.headers)


def get_optional_identity(request: Request) -> Optional[CallerIdentity]:
    return resolve_optional_identity(request.headers)


def get_orders(request: Request) -> OrderRepository:
    return request.app.state.orders


def get_item_engine(request: Request) -> ItemStatusEngine:
    return request.app.state.item_engine


def get_order_engine(request: Request) -> OrderStatusEngine:
    return request.app.state.order_engine


def get_payments(request: Request) -> PaymentService:
    return request.app.state.payments


@router.get("/", tags=["Root"])
def read_root():
    """Root endpoint for health checks"""
    return {"status": "ok", "service": "pos-service"}


@router.post("/orders", response_model=schemas.OrderCreated, status_code=status.HTTP_201_CREATED, tags=["Orders"])
def create_order(
    payload: schemas.OrderCreate,
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    orders: OrderRepository = Depends(get_orders),
):
    """Create an order from the kiosk or a staff screen"""
    return orders.create_order(identity, payload)


@router.get("/orders", response_model=schemas.OrderList, tags=["Orders"])
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    type_filter: Optional[str] = Query(None, alias="type"),
    date: Optional[str] = None,
    payment_status: Optional[str] = None,
    identity: CallerIdentity = Depends(get_identity),
    orders: OrderRepository = Depends(get_orders),
):
    """List orders visible to the caller's role, newest first"""
    logger.info(f"Listing orders for {identity.role.value} (status={status_filter}, type={type_filter})")
    return {
        "orders": orders.list_orders(
            identity,
            status=status_filter,
            order_type=type_filter,
            order_date=date,
            payment_status=payment_status,
        )
    }


@router.get("/orders/{order_id}", response_model=schemas.OrderEnvelope, tags=["Orders"])
def read_order(
    order_id: str,
    identity: CallerIdentity = Depends(get_identity),
    orders: OrderRepository = Depends(get_orders),
):
    """Get order by ID"""
    return {"order": orders.get_order(identity, parse_id(order_id, "Invalid order id"))}


@router.patch("/orders/{order_id}", response_model=schemas.OrderEnvelope, tags=["Orders"])
def update_order_status(
    order_id: str,
    payload: schemas.StatusUpdate,
    identity: CallerIdentity = Depends(get_identity),
    engine: OrderStatusEngine = Depends(get_order_engine),
):
    """Move an order along the packing workflow"""
    order = engine.set_order_status(identity, parse_id(order_id, "Invalid order id"), payload.status)
    return {"order": order}


@router.patch("/orders/{order_id}/printed", response_model=schemas.PrintedRead, tags=["Orders"])
def mark_order_printed(
    order_id: str,
    payload: schemas.PrintUpdate,
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    orders: OrderRepository = Depends(get_orders),
):
    """Record the first print of a customer or packaging ticket"""
    return orders.mark_printed(identity, parse_id(order_id, "Invalid order id"), payload.type)


@router.get("/orders/{order_id}/ticket", response_model=schemas.TicketRead, tags=["Orders"])
def read_order_ticket(
    order_id: str,
    identity: CallerIdentity = Depends(get_identity),
    orders: OrderRepository = Depends(get_orders),
):
    """Printable ticket text for an order"""
    ensure_role(identity, STAFF_ROLES)
    order = orders.get_full_order(parse_id(order_id, "Invalid order id"))
    return {"ticket_text": build_ticket_text(order)}


@router.patch("/order-items/{item_id}", response_model=schemas.ItemEnvelope, tags=["Order items"])
def update_item_status(
    item_id: str,
    payload: schemas.StatusUpdate,
    identity: CallerIdentity = Depends(get_identity),
    engine: ItemStatusEngine = Depends(get_item_engine),
):
    """Move an item along the station workflow"""
    result = engine.set_item_status(identity, parse_id(item_id, "Invalid item id"), payload.status)
    return {"item": result.item}


@router.post("/payments", response_model=schemas.PaymentRecorded, tags=["Payments"])
def create_payment(
    payload: schemas.PaymentCreate,
    identity: CallerIdentity = Depends(get_identity),
    payments: PaymentService = Depends(get_payments),
):
    """Record a cash-register payment"""
    return payments.record_payment(identity, payload)


@router.post("/payments/webhook", tags=["Payments"])
async def payment_webhook(request: Request, payments: PaymentService = Depends(get_payments)):
    """Provider notifications; always acknowledged"""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Payment webhook body is not valid JSON")
        payload = None
    await run_in_threadpool(payments.record_webhook, payload)
    return {"received": True}


@router.get("/products", response_model=schemas.ProductList, tags=["Products"])
def read_products(db: Session = Depends(get_db)):
    """Get the catalog"""
    logger.info("Fetching products")
    return {"data": catalog.list_products(db)}


@router.get("/cron/cleanup-orders", response_model=schemas.CleanupResult, tags=["Maintenance"])
def cleanup_orders(
    request: Request,
    secret: Optional[str] = None,
    x_cron_secret: Optional[str] = Header(None),
    orders: OrderRepository = Depends(get_orders),
):
    """Purge orders past the retention window"""
    started = time.monotonic()
    settings: Settings = request.app.state.settings
    configured = settings.cron_secret
    if not configured or not any(
        candidate is not None and secrets.compare_digest(candidate, configured)
        for candidate in (secret, x_cron_secret)
    ):
        logger.warning("Rejected cleanup request with a missing or wrong secret")
        raise AuthenticationError("Unauthorized")

    counts = orders.purge_expired(settings.order_retention_minutes)
    return {**counts, "duration_ms": int((time.monotonic() - started) * 1000)}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = Database(settings.database_url)
        db.create_all()
        if settings.seed_catalog:
            catalog.seed_catalog(db)
        feed = app.state.change_feed
        app.state.db = db
        app.state.orders = OrderRepository(db, feed, settings.order_number_retries)
        app.state.item_engine = ItemStatusEngine(db, feed, settings.enforce_transitions)
        app.state.order_engine = OrderStatusEngine(db, feed, settings.enforce_transitions)
        app.state.payments = PaymentService(db, feed)
        logger.info(f"POS service started ({settings.environment})")
        yield
        db.dispose()

    app = FastAPI(
        title="Kitchen POS Service",
        description="Orders, kitchen stations and packaging workflow for the kiosk and kitchen screens",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.change_feed = changes.ChangeFeed()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, expose_store_errors=not settings.is_production)
    app.include_router(router)
    app.include_router(changes.router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pos_service.main:app", host="0.0.0.0", port=8000, reload=True)
