"""Order aggregate: an order row and the item rows it owns, read and written together."""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import STAFF_ROLES, CallerIdentity, Role, ensure_role
from .changes import ChangeFeed, change_event
from .database import Database, business_date, utcnow
from .errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from .statuses import ItemStatus, OrderStatus, OrderType, PaymentStatus, PrintType, Station, parse_enum

logger = logging.getLogger(__name__)

PRINT_ROLES = (Role.ADMIN, Role.EMPAQUETADO)
PRINT_COLUMNS = {
    PrintType.CUSTOMER: "printed_customer_at",
    PrintType.PACKAGING: "printed_packaging_at",
}


def coerce_int(value: Any) -> Optional[int]:
    """Integer value of ``value`` when it is a whole number (int, integral float or numeric string)"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


def normalize_product_id(value: Any) -> Optional[int]:
    """Accept an integral number, ``{"id": <number>}`` or a numeric string"""
    if isinstance(value, dict):
        value = value.get("id")
        if isinstance(value, str):
            return None
    return coerce_int(value)


def parse_id(raw: Any, message: str) -> int:
    number = coerce_int(raw)
    if number is None or number <= 0:
        raise ValidationError(message)
    return number


def normalize_items(items: Sequence[schemas.OrderItemCreate]) -> List[Dict[str, Any]]:
    normalized = []
    for item in items:
        name = item.name_snapshot if item.name_snapshot is not None else item.name
        price = item.price_cents_snapshot if item.price_cents_snapshot is not None else item.price_cents
        qty = item.qty if item.qty is not None else 1
        normalized.append(
            {
                "product_id": normalize_product_id(item.product_id),
                "name_snapshot": str(name if name is not None else "").strip(),
                "price_cents_snapshot": coerce_int(price),
                "qty": coerce_int(qty),
                "station": item.station,
                "status": item.status,
                "notes": item.notes,
                "group_id": item.group_id,
            }
        )

    for item in normalized:
        if not item["name_snapshot"]:
            raise ValidationError("Item name is required")
        if item["price_cents_snapshot"] is None or item["price_cents_snapshot"] < 0:
            raise ValidationError("Invalid item price")
        if item["qty"] is None or item["qty"] <= 0:
            raise ValidationError("Invalid item qty")
        if parse_enum(Station, item["station"]) is None:
            raise ValidationError("Invalid item station")
        if item["status"] and parse_enum(ItemStatus, item["status"]) is None:
            raise ValidationError("Invalid item status")
    return normalized


def visible_items(session: Session, order_ids: Sequence[int], station: Optional[str]) -> Dict[int, List[models.OrderItem]]:
    """Items of the given orders grouped by order id, restricted to one station when given"""
    grouped: Dict[int, List[models.OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    query = session.query(models.OrderItem).filter(models.OrderItem.order_id.in_(list(order_ids)))
    if station:
        query = query.filter(models.OrderItem.station == station)
    for item in query.order_by(models.OrderItem.id).all():
        grouped[item.order_id].append(item)
    return grouped


def project_for(session: Session, order: models.Order, identity: Optional[CallerIdentity]) -> schemas.OrderRead:
    station = identity.station if identity else None
    items = visible_items(session, [order.id], station)[order.id]
    return schemas.project_order(order, items)


class OrderRepository:
    """Reads and writes orders together with their items"""

    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None, order_number_retries: int = 5):
        self.db = db
        self.feed = feed
        self.order_number_retries = max(1, order_number_retries)

    def _publish(self, events: List[Dict[str, Any]]) -> None:
        if self.feed is None:
            return
        for event in events:
            self.feed.publish(event)

    # -- creation -------------------------------------------------------

    def create_order(self, identity: Optional[CallerIdentity], payload: schemas.OrderCreate) -> schemas.OrderCreated:
        order_type = parse_enum(OrderType, payload.type)
        if order_type is None:
            raise ValidationError("Invalid order type")

        if order_type is OrderType.DELIVERY:
            if identity is None:
                raise AuthenticationError("Delivery orders require admin role")
            ensure_role(identity, [Role.ADMIN])
            if not (payload.customer_name or "").strip() or not (payload.customer_phone or "").strip():
                raise ValidationError("Delivery orders require customer name and phone")
            if not payload.address_json:
                raise ValidationError("Delivery orders require an address")

        if not payload.items:
            raise ValidationError("Items are required")
        items = normalize_items(payload.items)

        delivery_fee = coerce_int(payload.delivery_fee_cents)
        if delivery_fee is None or delivery_fee < 0:
            delivery_fee = 0
        subtotal = sum(item["price_cents_snapshot"] * item["qty"] for item in items)
        total = subtotal + delivery_fee

        caller = f"{identity.role.value}:{identity.user_id}" if identity else "kiosk"
        logger.info(f"Creating {order_type.value} order with {len(items)} items for {caller}")

        for attempt in range(1, self.order_number_retries + 1):
            try:
                created, events = self._insert_order(order_type, payload, items, subtotal, delivery_fee, total)
            except IntegrityError as exc:
                logger.warning(f"Order number collision on attempt {attempt}: {exc.orig}")
                continue
            self._publish(events)
            logger.info(f"Created order {created.order_id} as #{created.order_number}")
            return created

        raise ConflictError("Could not allocate an order number, please retry")

    @staticmethod
    def _next_order_number(session: Session, order_date: date) -> int:
        current = (
            session.query(func.max(models.Order.order_number))
            .filter(models.Order.order_date == order_date)
            .scalar()
        )
        return (current or 0) + 1

    def _insert_order(self, order_type: OrderType, payload: schemas.OrderCreate, items: List[Dict[str, Any]],
                      subtotal: int, delivery_fee: int, total: int) -> Tuple[schemas.OrderCreated, List[Dict[str, Any]]]:
        with self.db.session() as session:
            today = business_date()
            now = utcnow()
            order = models.Order(
                order_date=today,
                order_number=self._next_order_number(session, today),
                type=order_type.value,
                status=OrderStatus.RECIBIDO.value,
                payment_status=PaymentStatus.AWAITING_PAYMENT.value,
                customer_name=payload.customer_name,
                customer_phone=payload.customer_phone,
                address_json=payload.address_json,
                notes=payload.notes,
                subtotal_cents=subtotal,
                delivery_fee_cents=delivery_fee,
                total_cents=total,
                created_at=now,
                updated_at=now,
            )
            order.items = [
                models.OrderItem(
                    product_id=item["product_id"],
                    station=Station(item["station"]).value,
                    status=ItemStatus.EN_COLA.value,
                    name_snapshot=item["name_snapshot"],
                    price_cents_snapshot=item["price_cents_snapshot"],
                    qty=item["qty"],
                    notes=item["notes"],
                    group_id=item["group_id"],
                    created_at=now,
                    updated_at=now,
                )
                for item in items
            ]
            session.add(order)
            session.flush()

            projection = schemas.project_order(order, order.items)
            stations = schemas.order_stations(order)
            events = [change_event("orders", "INSERT", new=schemas.order_row(order), stations=stations)]
            events.extend(change_event("order_items", "INSERT", new=schemas.item_row(item)) for item in order.items)

        created = schemas.OrderCreated(order_id=projection.id, order_number=projection.order_number, order=projection)
        return created, events

    # -- reads ----------------------------------------------------------

    def list_orders(self, identity: CallerIdentity, status: Optional[str] = None, order_type: Optional[str] = None,
                    order_date: Optional[str] = None, payment_status: Optional[str] = None) -> List[schemas.OrderRead]:
        ensure_role(identity, STAFF_ROLES)

        if status and parse_enum(OrderStatus, status) is None:
            raise ValidationError("Invalid status filter")
        if order_type and parse_enum(OrderType, order_type) is None:
            raise ValidationError("Invalid type filter")
        if payment_status and parse_enum(PaymentStatus, payment_status) is None:
            raise ValidationError("Invalid payment status filter")
        day = None
        if order_date:
            try:
                day = datetime.strptime(order_date, "%Y-%m-%d").date()
            except ValueError:
                raise ValidationError("Invalid date filter")

        station = identity.station
        with self.db.session() as session:
            query = session.query(models.Order)
            if status:
                query = query.filter(models.Order.status == status)
            if order_type:
                query = query.filter(models.Order.type == order_type)
            if day:
                query = query.filter(models.Order.order_date == day)
            if payment_status:
                query = query.filter(models.Order.payment_status == payment_status)
            orders = query.order_by(models.Order.created_at.desc(), models.Order.id.desc()).all()

            items_by_order = visible_items(session, [order.id for order in orders], station)
            if station:
                orders = [order for order in orders if items_by_order[order.id]]
            return [schemas.project_order(order, items_by_order[order.id]) for order in orders]

    def get_order(self, identity: CallerIdentity, order_id: int) -> schemas.OrderRead:
        ensure_role(identity, STAFF_ROLES)
        with self.db.session() as session:
            order = session.get(models.Order, order_id)
            if order is None:
                logger.warning(f"Order {order_id} not found")
                raise NotFoundError()
            projection = project_for(session, order, identity)

        # station roles must not learn that an order without their items exists
        if identity.station and not projection.items:
            raise NotFoundError()
        return projection

    def get_full_order(self, order_id: int) -> schemas.OrderRead:
        with self.db.session() as session:
            order = session.get(models.Order, order_id)
            if order is None:
                raise NotFoundError()
            return project_for(session, order, None)

    # -- print tracking -------------------------------------------------

    def mark_printed(self, identity: Optional[CallerIdentity], order_id: int, print_type: Any) -> schemas.PrintedRead:
        if identity is not None:
            ensure_role(identity, PRINT_ROLES)

        kind = parse_enum(PrintType, print_type)
        if kind is None:
            raise ValidationError("Invalid print type")
        if identity is None and kind is not PrintType.CUSTOMER:
            raise AuthorizationError()

        column = getattr(models.Order, PRINT_COLUMNS[kind])
        events = []
        with self.db.session() as session:
            if session.get(models.Order, order_id) is None:
                raise NotFoundError()
            # first print wins: never overwrite an existing timestamp
            result = session.execute(
                update(models.Order)
                .where(models.Order.id == order_id, column.is_(None))
                .values({PRINT_COLUMNS[kind]: utcnow()})
                .execution_options(synchronize_session=False)
            )
            order = session.query(models.Order).filter(models.Order.id == order_id).populate_existing().one()
            if result.rowcount:
                logger.info(f"Order {order_id} {kind.value} ticket printed")
                row = schemas.order_row(order)
                stations = schemas.order_stations(order)
                events.append(change_event("orders", "UPDATE", new=row, old=row, stations=stations))
            printed = schemas.PrintedRead(
                printed_customer_at=order.printed_customer_at,
                printed_packaging_at=order.printed_packaging_at,
            )
        self._publish(events)
        return printed

    # -- retention ------------------------------------------------------

    def purge_orders(self, order_ids: Sequence[int]) -> Dict[str, int]:
        """Delete the given orders with their payments and items in one transaction"""
        ids = list(order_ids)
        if not ids:
            return {"deleted_orders": 0, "deleted_items": 0, "deleted_payments": 0}
        with self.db.session() as session:
            counts, events = self._purge(session, ids)
        self._publish(events)
        return counts

    def purge_expired(self, retention_minutes: int, now: Optional[datetime] = None) -> Dict[str, int]:
        cutoff = (now or utcnow()) - timedelta(minutes=retention_minutes)
        with self.db.session() as session:
            ids = [row.id for row in session.query(models.Order.id).filter(models.Order.created_at < cutoff).all()]
            if not ids:
                return {"deleted_orders": 0, "deleted_items": 0, "deleted_payments": 0}
            counts, events = self._purge(session, ids)
        logger.info(f"Purged {counts['deleted_orders']} orders created before {cutoff.isoformat()}")
        self._publish(events)
        return counts

    @staticmethod
    def _purge(session: Session, ids: List[int]) -> Tuple[Dict[str, int], List[Dict[str, Any]]]:
        stations: Dict[int, set] = {order_id: set() for order_id in ids}
        rows = (
            session.query(models.OrderItem.order_id, models.OrderItem.station)
            .filter(models.OrderItem.order_id.in_(ids))
            .all()
        )
        for order_id, station in rows:
            stations[order_id].add(station)
        events = [
            change_event("orders", "DELETE", old={"id": order_id}, stations=stations[order_id]) for order_id in ids
        ]
        deleted_payments = (
            session.query(models.Payment)
            .filter(models.Payment.order_id.in_(ids))
            .delete(synchronize_session=False)
        )
        deleted_items = (
            session.query(models.OrderItem)
            .filter(models.OrderItem.order_id.in_(ids))
            .delete(synchronize_session=False)
        )
        deleted_orders = (
            session.query(models.Order)
            .filter(models.Order.id.in_(ids))
            .delete(synchronize_session=False)
        )
        return {
            "deleted_orders": deleted_orders,
            "deleted_items": deleted_items,
            "deleted_payments": deleted_payments,
        }, events
