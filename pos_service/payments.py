import logging
from typing import Any, Optional

from sqlalchemy import update

from . import models, schemas
from .auth import CallerIdentity, Role, ensure_role
from .changes import ChangeFeed, change_event
from .database import Database, utcnow
from .errors import NotFoundError, ValidationError
from .repository import coerce_int
from .statuses import PaymentStatus

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "cash"
DEFAULT_PROVIDER = "unknown"
DEFAULT_WEBHOOK_STATUS = "PENDIENTE"
DEFAULT_CURRENCY = "MXN"


class PaymentService:
    """Cash-register payments and the provider webhook recorder"""

    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    def record_payment(self, identity: CallerIdentity, payload: schemas.PaymentCreate) -> schemas.PaymentRecorded:
        ensure_role(identity, [Role.ADMIN])

        if payload.order_id in (None, "", 0):
            raise ValidationError("Order id is required")
        order_id = coerce_int(payload.order_id)
        if order_id is None or order_id <= 0:
            raise ValidationError("Invalid order id")
        amount = coerce_int(payload.amount_cents)
        if amount is None or amount <= 0:
            raise ValidationError("Amount is required")
        method = str(payload.method).strip() if payload.method else DEFAULT_METHOD

        logger.info(f"Recording {method} payment of {amount} cents for order {order_id}")
        event = None
        with self.db.session() as session:
            order = session.get(models.Order, order_id)
            if order is None:
                logger.warning(f"Payment for unknown order {order_id}")
                raise NotFoundError()

            session.add(models.Payment(order_id=order_id, amount_cents=amount, method=method, created_at=utcnow()))
            old_row = schemas.order_row(order)
            # only the first payment marks the order paid
            result = session.execute(
                update(models.Order)
                .where(models.Order.id == order_id, models.Order.payment_status != PaymentStatus.PAID.value)
                .values(payment_status=PaymentStatus.PAID.value, paid_at=utcnow(), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            session.refresh(order)
            if result.rowcount:
                event = change_event(
                    "orders", "UPDATE", new=schemas.order_row(order), old=old_row,
                    stations=schemas.order_stations(order),
                )
            recorded = schemas.PaymentRecorded(ok=True, order=schemas.PaymentOrderRead.model_validate(order))

        if event is not None and self.feed is not None:
            self.feed.publish(event)
        return recorded

    def record_webhook(self, payload: Any) -> None:
        """Store a provider notification when it names an order and an amount; never raises"""
        if not isinstance(payload, dict):
            logger.info("Payment webhook without a JSON object body ignored")
            return
        order_id = coerce_int(payload.get("order_id"))
        amount = coerce_int(payload.get("amount_cents"))
        if not order_id or not amount:
            logger.info("Payment webhook without order_id/amount_cents ignored")
            return

        try:
            with self.db.session() as session:
                session.add(
                    models.Payment(
                        order_id=order_id,
                        amount_cents=amount,
                        method=payload.get("method"),
                        provider=payload.get("provider") or DEFAULT_PROVIDER,
                        status=payload.get("status") or DEFAULT_WEBHOOK_STATUS,
                        external_id=payload.get("external_id"),
                        currency=payload.get("currency") or DEFAULT_CURRENCY,
                        raw_json=payload,
                        created_at=utcnow(),
                    )
                )
            logger.info(f"Payment webhook recorded for order {order_id}")
        except Exception as exc:
            logger.error(f"Payment webhook could not be stored: {exc}")
