"""Order workflow: packing and delivery steps driven by the packaging screen."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Sequence

from . import models, schemas
from .auth import CallerIdentity, Role, ensure_role
from .changes import ChangeFeed, change_event
from .database import Database, utcnow
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .repository import project_for
from .statuses import OrderStatus, OrderType, parse_enum

logger = logging.getLogger(__name__)

ORDER_ROLES = (Role.ADMIN, Role.EMPAQUETADO)

PACKAGING_TARGETS = (
    OrderStatus.EMPACANDO,
    OrderStatus.LISTO_PARA_ENTREGAR,
    OrderStatus.EN_REPARTO,
    OrderStatus.ENTREGADO,
)

STATUS_PRIORITY = {
    OrderStatus.LISTO_PARA_EMPACAR: 0,
    OrderStatus.EMPACANDO: 1,
    OrderStatus.LISTO_PARA_ENTREGAR: 2,
    OrderStatus.EN_REPARTO: 3,
    OrderStatus.RECIBIDO: 4,
    OrderStatus.EN_PROCESO: 5,
    OrderStatus.ENTREGADO: 6,
}


@dataclass(frozen=True)
class OrderAction:
    label: str
    next_status: OrderStatus


def get_order_actions(status: Any, order_type: Any) -> List[OrderAction]:
    """Buttons the packaging screen shows for an order"""
    current = parse_enum(OrderStatus, status)
    if current is OrderStatus.LISTO_PARA_EMPACAR:
        return [OrderAction("Iniciar empaquetado", OrderStatus.EMPACANDO)]
    if current is OrderStatus.EMPACANDO:
        return [OrderAction("Listo para entregar", OrderStatus.LISTO_PARA_ENTREGAR)]
    if current is OrderStatus.LISTO_PARA_ENTREGAR:
        if parse_enum(OrderType, order_type) is OrderType.DELIVERY:
            return [OrderAction("Enviar a reparto", OrderStatus.EN_REPARTO)]
        return [OrderAction("Entregado", OrderStatus.ENTREGADO)]
    if current is OrderStatus.EN_REPARTO:
        return [OrderAction("Entregado", OrderStatus.ENTREGADO)]
    return []


def allowed_next_statuses(status: Any, order_type: Any) -> List[OrderStatus]:
    current = parse_enum(OrderStatus, status)
    if current is OrderStatus.RECIBIDO:
        return [OrderStatus.EN_PROCESO, OrderStatus.LISTO_PARA_EMPACAR]
    if current is OrderStatus.EN_PROCESO:
        return [OrderStatus.LISTO_PARA_EMPACAR]
    return [action.next_status for action in get_order_actions(status, order_type)]


def packing_queue_key(order):
    priority = STATUS_PRIORITY.get(parse_enum(OrderStatus, order.status), len(STATUS_PRIORITY))
    created_at = order.created_at or datetime.min
    return priority, created_at, order.id


def sort_packing_queue(orders: Sequence) -> list:
    """Orders in the sequence the packaging screen works through them"""
    return sorted(orders, key=packing_queue_key)


class OrderStatusEngine:
    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None, enforce_transitions: bool = False):
        self.db = db
        self.feed = feed
        self.enforce_transitions = enforce_transitions

    def set_order_status(self, identity: CallerIdentity, order_id: int, next_status: Any) -> schemas.OrderRead:
        ensure_role(identity, ORDER_ROLES)
        target = parse_enum(OrderStatus, next_status)
        if target is None:
            raise ValidationError("Invalid status")
        if identity.role is Role.EMPAQUETADO and target not in PACKAGING_TARGETS:
            logger.warning(f"EMPAQUETADO user {identity.user_id} tried to set order {order_id} to {target.value}")
            raise AuthorizationError()

        logger.info(f"Setting order {order_id} to {target.value} ({identity.role.value}:{identity.user_id})")
        with self.db.session() as session:
            order = (
                session.query(models.Order)
                .filter(models.Order.id == order_id)
                .with_for_update()
                .one_or_none()
            )
            if order is None:
                logger.warning(f"Order {order_id} not found")
                raise NotFoundError()

            if self.enforce_transitions and target not in allowed_next_statuses(order.status, order.type):
                raise ConflictError(f"Cannot move order from {order.status} to {target.value}")

            old_row = schemas.order_row(order)
            order.status = target.value
            order.updated_at = utcnow()
            session.flush()
            event = change_event(
                "orders", "UPDATE", new=schemas.order_row(order), old=old_row, stations=schemas.order_stations(order)
            )
            projection = project_for(session, order, identity)

        if self.feed is not None:
            self.feed.publish(event)
        return projection
