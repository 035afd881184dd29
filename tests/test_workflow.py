from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from conftest import item, role_headers
from pos_service.item_status import get_item_action
from pos_service.main import create_app
from pos_service.order_status import get_order_actions, sort_packing_queue
from pos_service.statuses import ItemStatus, OrderStatus

ADMIN = role_headers("ADMIN")
PLANCHA = role_headers("PLANCHA", 2)
FREIDORA = role_headers("FREIDORA", 3)
EMPAQUETADO = role_headers("EMPAQUETADO", 4)


def set_item(client, item_id, status, headers):
    return client.patch(f"/order-items/{item_id}", json={"status": status}, headers=headers)


def set_order(client, order_id, status, headers):
    return client.patch(f"/orders/{order_id}", json={"status": status}, headers=headers)


def test_takeout_order_walks_the_whole_workflow(client, create_order):
    created = create_order(items=[item("Hamburguesa", 5000, 2, "PLANCHA"), item("Papas", 3000, 1, "FREIDORA")])
    assert created["order"]["total_cents"] == 13000
    order_id = created["order_id"]
    grill_item, fryer_item = created["order"]["items"]

    response = set_item(client, grill_item["id"], "LISTO", PLANCHA)
    assert response.status_code == 200
    assert response.json()["item"]["status"] == "LISTO"
    order = client.get(f"/orders/{order_id}", headers=ADMIN).json()["order"]
    assert order["status"] == "RECIBIDO"

    assert set_item(client, fryer_item["id"], "LISTO", FREIDORA).status_code == 200
    order = client.get(f"/orders/{order_id}", headers=ADMIN).json()["order"]
    assert order["status"] == "LISTO_PARA_EMPACAR"

    for status in ("EMPACANDO", "LISTO_PARA_ENTREGAR", "ENTREGADO"):
        response = set_order(client, order_id, status, EMPAQUETADO)
        assert response.status_code == 200, response.text
        assert response.json()["order"]["status"] == status

    response = set_order(client, order_id, "RECIBIDO", EMPAQUETADO)
    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}


def test_cascade_does_not_promote_an_order_already_past_packing(client, create_order):
    created = create_order(items=[item(station="PLANCHA")])
    order_id = created["order_id"]
    item_id = created["order"]["items"][0]["id"]

    assert set_order(client, order_id, "EMPACANDO", ADMIN).status_code == 200
    assert set_item(client, item_id, "LISTO", PLANCHA).status_code == 200
    order = client.get(f"/orders/{order_id}", headers=ADMIN).json()["order"]
    assert order["status"] == "EMPACANDO"


def test_cascade_promotes_from_en_proceso(client, create_order):
    created = create_order(items=[item(station="FREIDORA")])
    order_id = created["order_id"]
    assert set_order(client, order_id, "EN_PROCESO", ADMIN).status_code == 200
    assert set_item(client, created["order"]["items"][0]["id"], "LISTO", FREIDORA).status_code == 200
    order = client.get(f"/orders/{order_id}", headers=ADMIN).json()["order"]
    assert order["status"] == "LISTO_PARA_EMPACAR"


def test_item_status_rejects_unknown_values(client, create_order):
    item_id = create_order()["order"]["items"][0]["id"]
    response = set_item(client, item_id, "QUEMADO", PLANCHA)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid status"}


def test_item_station_mismatch_is_forbidden_not_missing(client, create_order):
    item_id = create_order(items=[item(station="PLANCHA")])["order"]["items"][0]["id"]
    response = set_item(client, item_id, "EN_PREPARACION", FREIDORA)
    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}


def test_item_status_roles_and_lookup(client, create_order):
    item_id = create_order()["order"]["items"][0]["id"]

    assert set_item(client, item_id, "LISTO", EMPAQUETADO).status_code == 403
    assert set_item(client, item_id, "LISTO", {}).status_code == 401
    assert set_item(client, item_id, "EN_PREPARACION", ADMIN).status_code == 200

    response = set_item(client, 9999, "LISTO", ADMIN)
    assert response.status_code == 404
    assert response.json() == {"error": "Order item not found"}


def test_composite_item_key_is_rejected(client, create_order):
    created = create_order()
    composite = f"{created['order_id']}:7"
    response = set_item(client, composite, "LISTO", ADMIN)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid item id"}


def test_items_may_jump_states_by_default(client, create_order):
    item_id = create_order()["order"]["items"][0]["id"]
    assert set_item(client, item_id, "LISTO", PLANCHA).status_code == 200
    response = set_item(client, item_id, "EN_COLA", PLANCHA)
    assert response.status_code == 200
    assert response.json()["item"]["status"] == "EN_COLA"


def test_order_status_validation(client, create_order):
    order_id = create_order()["order_id"]

    response = set_order(client, order_id, "PERDIDO", ADMIN)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid status"}

    assert set_order(client, order_id, "EMPACANDO", PLANCHA).status_code == 403
    assert set_order(client, 9999, "EMPACANDO", ADMIN).status_code == 404
    assert set_order(client, "x1", "EMPACANDO", ADMIN).status_code == 400
    # admins may move an order anywhere when transitions are not enforced
    response = set_order(client, order_id, "ENTREGADO", ADMIN)
    assert response.status_code == 200
    response = set_order(client, order_id, "RECIBIDO", ADMIN)
    assert response.json()["order"]["status"] == "RECIBIDO"


@pytest.fixture
def strict_client(settings):
    settings.enforce_transitions = True
    with TestClient(create_app(settings)) as client:
        yield client


def test_enforced_transitions_reject_skips(strict_client):
    created = strict_client.post("/orders", json={"type": "DINEIN", "items": [item(station="PLANCHA")]}).json()
    order_id = created["order_id"]
    item_id = created["order"]["items"][0]["id"]

    response = set_item(strict_client, item_id, "LISTO", PLANCHA)
    assert response.status_code == 409

    assert set_item(strict_client, item_id, "PENDIENTE", PLANCHA).status_code == 200
    assert set_item(strict_client, item_id, "EN_PREPARACION", PLANCHA).status_code == 200
    assert set_item(strict_client, item_id, "LISTO", PLANCHA).status_code == 200

    assert set_order(strict_client, order_id, "ENTREGADO", EMPAQUETADO).status_code == 409
    assert set_order(strict_client, order_id, "EN_REPARTO", EMPAQUETADO).status_code == 409
    assert set_order(strict_client, order_id, "EMPACANDO", EMPAQUETADO).status_code == 200
    assert set_order(strict_client, order_id, "LISTO_PARA_ENTREGAR", EMPAQUETADO).status_code == 200
    assert set_order(strict_client, order_id, "ENTREGADO", EMPAQUETADO).status_code == 200


def test_item_actions():
    assert get_item_action("EN_COLA") is None
    assert get_item_action("PENDIENTE") == ("Iniciar preparación", ItemStatus.EN_PREPARACION)
    assert get_item_action("EN_PREPARACION") == ("Marcar listo", ItemStatus.LISTO)
    assert get_item_action("LISTO") is None


def test_order_actions_depend_on_type():
    def labels(status, order_type):
        return [(a.label, a.next_status) for a in get_order_actions(status, order_type)]

    assert labels("RECIBIDO", "TAKEOUT") == []
    assert labels("LISTO_PARA_EMPACAR", "TAKEOUT") == [("Iniciar empaquetado", OrderStatus.EMPACANDO)]
    assert labels("EMPACANDO", "DINEIN") == [("Listo para entregar", OrderStatus.LISTO_PARA_ENTREGAR)]
    assert labels("LISTO_PARA_ENTREGAR", "DELIVERY") == [("Enviar a reparto", OrderStatus.EN_REPARTO)]
    assert labels("LISTO_PARA_ENTREGAR", "TAKEOUT") == [("Entregado", OrderStatus.ENTREGADO)]
    assert labels("EN_REPARTO", "DELIVERY") == [("Entregado", OrderStatus.ENTREGADO)]
    assert labels("ENTREGADO", "DELIVERY") == []


class QueuedOrder:
    def __init__(self, id, status, created_at):
        self.id = id
        self.status = status
        self.created_at = created_at


def test_packing_queue_priority_then_oldest_first():
    orders = [
        QueuedOrder(1, "ENTREGADO", datetime(2026, 1, 1, 12, 0)),
        QueuedOrder(2, "RECIBIDO", datetime(2026, 1, 1, 12, 1)),
        QueuedOrder(3, "LISTO_PARA_EMPACAR", datetime(2026, 1, 1, 12, 5)),
        QueuedOrder(4, "EMPACANDO", datetime(2026, 1, 1, 12, 2)),
        QueuedOrder(5, "LISTO_PARA_EMPACAR", datetime(2026, 1, 1, 12, 3)),
        QueuedOrder(6, "EN_REPARTO", datetime(2026, 1, 1, 12, 0)),
    ]
    assert [o.id for o in sort_packing_queue(orders)] == [5, 3, 4, 6, 2, 1]
