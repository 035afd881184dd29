"""Item workflow and the completion cascade onto the parent order."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update

from . import models, schemas
from .auth import CallerIdentity, Role, ensure_role
from .changes import ChangeFeed, change_event
from .database import Database, utcnow
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .statuses import ItemStatus, OrderStatus, parse_enum

logger = logging.getLogger(__name__)

ITEM_ROLES = (Role.ADMIN, Role.PLANCHA, Role.FREIDORA)

# order statuses the cascade may promote from
PROMOTABLE_ORDER_STATUSES = (OrderStatus.RECIBIDO.value, OrderStatus.EN_PROCESO.value)

ITEM_TRANSITIONS = {
    ItemStatus.EN_COLA: (ItemStatus.PENDIENTE, ItemStatus.EN_PREPARACION),
    ItemStatus.PENDIENTE: (ItemStatus.EN_PREPARACION,),
    ItemStatus.EN_PREPARACION: (ItemStatus.LISTO,),
    ItemStatus.LISTO: (),
}

# what a station screen offers for an item in each state
ITEM_ACTIONS: Dict[ItemStatus, Optional[Tuple[str, ItemStatus]]] = {
    ItemStatus.EN_COLA: None,
    ItemStatus.PENDIENTE: ("Iniciar preparación", ItemStatus.EN_PREPARACION),
    ItemStatus.EN_PREPARACION: ("Marcar listo", ItemStatus.LISTO),
    ItemStatus.LISTO: None,
}


def get_item_action(status: Any) -> Optional[Tuple[str, ItemStatus]]:
    current = parse_enum(ItemStatus, status)
    if current is None:
        return None
    return ITEM_ACTIONS[current]


@dataclass
class ItemStatusResult:
    item: schemas.OrderItemRead
    order_promoted: bool = False


class ItemStatusEngine:
    def __init__(self, db: Database, feed: Optional[ChangeFeed] = None, enforce_transitions: bool = False):
        self.db = db
        self.feed = feed
        self.enforce_transitions = enforce_transitions

    def set_item_status(self, identity: CallerIdentity, item_id: int, next_status: Any) -> ItemStatusResult:
        """Write an item status; when the last open item becomes LISTO the order moves to packing"""
        ensure_role(identity, ITEM_ROLES)
        target = parse_enum(ItemStatus, next_status)
        if target is None:
            raise ValidationError("Invalid status")

        logger.info(f"Setting item {item_id} to {target.value} ({identity.role.value}:{identity.user_id})")
        events: List[Dict[str, Any]] = []
        with self.db.session() as session:
            item = session.get(models.OrderItem, item_id)
            if item is None:
                logger.warning(f"Order item {item_id} not found")
                raise NotFoundError("Order item not found")
            if identity.station and item.station != identity.station:
                raise AuthorizationError()

            # serialize writers of the same order before reading sibling state
            order = (
                session.query(models.Order)
                .filter(models.Order.id == item.order_id)
                .with_for_update()
                .one()
            )
            item = (
                session.query(models.OrderItem)
                .filter(models.OrderItem.id == item_id)
                .populate_existing()
                .one()
            )

            current = ItemStatus(item.status)
            if self.enforce_transitions and target not in ITEM_TRANSITIONS[current]:
                raise ConflictError(f"Cannot move item from {current.value} to {target.value}")

            old_item = schemas.item_row(item)
            now = utcnow()
            item.status = target.value
            item.updated_at = now
            session.flush()
            events.append(change_event("order_items", "UPDATE", new=schemas.item_row(item), old=old_item))

            promoted = False
            if target is ItemStatus.LISTO:
                remaining = (
                    session.query(func.count(models.OrderItem.id))
                    .filter(
                        models.OrderItem.order_id == order.id,
                        models.OrderItem.status != ItemStatus.LISTO.value,
                    )
                    .scalar()
                )
                if remaining == 0:
                    old_order = schemas.order_row(order)
                    result = session.execute(
                        update(models.Order)
                        .where(
                            models.Order.id == order.id,
                            models.Order.status.in_(PROMOTABLE_ORDER_STATUSES),
                        )
                        .values(status=OrderStatus.LISTO_PARA_EMPACAR.value, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    promoted = result.rowcount == 1
                    if promoted:
                        session.refresh(order)
                        events.append(
                            change_event(
                                "orders", "UPDATE", new=schemas.order_row(order), old=old_order,
                                stations=schemas.order_stations(order),
                            )
                        )

            updated = schemas.OrderItemRead.model_validate(item)

        if promoted:
            logger.info(f"Order {updated.order_id} is ready for packing")
        if self.feed is not None:
            for event in events:
                self.feed.publish(event)
        return ItemStatusResult(item=updated, order_promoted=promoted)
