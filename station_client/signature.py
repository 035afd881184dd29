from typing import Any, Iterable, Mapping


def _row_key(row: Mapping[str, Any]) -> str:
    return f"{row.get('id')}:{row.get('status')}:{row.get('updated_at')}"


def _sort_id(row: Mapping[str, Any]):
    value = row.get("id")
    return (0, value) if isinstance(value, int) else (1, str(value))


def orders_signature(orders: Iterable[Mapping[str, Any]]) -> str:
    """Fingerprint of what a station screen renders; equal lists give equal strings"""
    parts = []
    for order in sorted(orders or [], key=_sort_id):
        items = sorted(order.get("items") or [], key=_sort_id)
        item_keys = ",".join(_row_key(item) for item in items)
        parts.append(f"{_row_key(order)}[{item_keys}]")
    return "|".join(parts)
