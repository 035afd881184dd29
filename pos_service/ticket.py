from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .schemas import OrderRead

TYPE_LABELS = {
    "DINEIN": "Comer aquí",
    "TAKEOUT": "Para llevar",
    "DELIVERY": "Delivery",
}


def format_currency(value_cents: int) -> str:
    """Whole pesos with thousands separators, e.g. 123456 -> $1,235"""
    pesos = (Decimal(value_cents) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if pesos < 0 else ""
    return f"{sign}${abs(int(pesos)):,}"


def format_created(created_at: Optional[datetime]) -> str:
    if created_at is None:
        return "--"
    # stored as naive UTC; printed in the shop's local time
    local = created_at.replace(tzinfo=timezone.utc).astimezone()
    return local.strftime("%d-%m-%Y, %H:%M:%S")


def build_ticket_text(order: OrderRead) -> str:
    """Plain-text receipt for a thermal printer"""
    subtotal = sum((item.price_cents_snapshot or 0) * item.qty for item in order.items)
    delivery_fee = order.delivery_fee_cents or 0
    total = order.total_cents if order.total_cents is not None else subtotal + delivery_fee

    lines = [
        "Ticket de pedido",
        f"Pedido #{order.order_number:03d}",
        f"Tipo: {TYPE_LABELS.get(order.type, order.type)}",
        f"Estado: {order.status}",
        f"Creado: {format_created(order.created_at)}",
        "",
        "Items",
    ]
    for item in order.items:
        amount = (item.price_cents_snapshot or 0) * item.qty
        lines.append(f"- {item.name_snapshot}")
        lines.append(f"  {item.station} · x{item.qty} · {format_currency(amount)}")
        if item.notes:
            lines.append(f"  Nota: {item.notes}")

    lines.append("")
    lines.append(f"Subtotal: {format_currency(subtotal)}")
    if delivery_fee > 0:
        lines.append(f"Envío: {format_currency(delivery_fee)}")
    lines.append(f"Total: {format_currency(total)}")

    if order.notes:
        lines.extend(["", "Notas del pedido", order.notes])

    return "\n".join(lines) + "\n"
