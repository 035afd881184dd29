import asyncio

import pytest
from fastapi import WebSocketDisconnect

from conftest import item, role_headers
from pos_service.changes import ChangeFeed, change_event, view_for
from pos_service.schemas import OrderCreate

ADMIN = role_headers("ADMIN")
PLANCHA = role_headers("PLANCHA", 2)
FREIDORA = role_headers("FREIDORA", 3)
STATION_ORDER_KEYS = {"id", "status", "payment_status", "updated_at"}


def test_anonymous_subscribers_are_refused(client):
    for url in ("/ws/changes", "/ws/changes?station=FREIDORA", "/ws/changes?role=COCINA&user_id=1"):
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect(url):
                pass
        assert excinfo.value.code == 1008


def test_websocket_acknowledges_and_answers_ping(client):
    with client.websocket_connect("/ws/changes", headers=ADMIN) as websocket:
        assert websocket.receive_json() == {"type": "subscribed", "station": None}
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}


def test_identity_can_ride_in_the_query_string(client):
    with client.websocket_connect("/ws/changes?role=freidora&user_id=3") as websocket:
        assert websocket.receive_json() == {"type": "subscribed", "station": "FREIDORA"}


def test_station_subscriber_only_sees_its_orders_without_customer_data(client, create_order):
    with client.websocket_connect("/ws/changes", headers=FREIDORA) as websocket:
        assert websocket.receive_json()["type"] == "subscribed"

        create_order(
            items=[item(station="PLANCHA")], order_type="DELIVERY", headers=ADMIN,
            customer_name="Ana", customer_phone="5550000", address_json={"street": "Juarez 10"},
        )
        created = create_order(items=[item(station="PLANCHA"), item("Papas", 3000, 1, "FREIDORA")])

        order_event = websocket.receive_json()
        assert order_event["table"] == "orders"
        assert order_event["event"] == "INSERT"
        assert order_event["new"]["id"] == created["order_id"]
        assert set(order_event["new"]) == STATION_ORDER_KEYS
        assert "stations" not in order_event

        item_event = websocket.receive_json()
        assert item_event["table"] == "order_items"
        assert item_event["new"]["station"] == "FREIDORA"

        grill_item = created["order"]["items"][0]
        client.patch(f"/order-items/{grill_item['id']}", json={"status": "EN_PREPARACION"}, headers=PLANCHA)
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}


def test_admin_subscriber_gets_full_order_rows(client, create_order):
    with client.websocket_connect("/ws/changes", headers=ADMIN) as websocket:
        websocket.receive_json()
        create_order(
            items=[item(station="PLANCHA")], order_type="DELIVERY", headers=ADMIN,
            customer_name="Ana", customer_phone="5550000", address_json={"street": "Juarez 10"},
        )
        order_event = websocket.receive_json()
        assert order_event["new"]["customer_phone"] == "5550000"
        assert order_event["new"]["address_json"] == {"street": "Juarez 10"}
        assert "stations" not in order_event


def test_item_update_event_carries_old_and_new_rows(client, create_order):
    created = create_order(items=[item(station="PLANCHA")])
    item_id = created["order"]["items"][0]["id"]

    with client.websocket_connect("/ws/changes", headers=PLANCHA) as websocket:
        websocket.receive_json()
        client.patch(f"/order-items/{item_id}", json={"status": "LISTO"}, headers=PLANCHA)

        item_event = websocket.receive_json()
        assert item_event["event"] == "UPDATE"
        assert item_event["old"]["status"] == "EN_COLA"
        assert item_event["new"]["status"] == "LISTO"

        order_event = websocket.receive_json()
        assert order_event["table"] == "orders"
        assert order_event["old"]["status"] == "RECIBIDO"
        assert order_event["new"]["status"] == "LISTO_PARA_EMPACAR"


def test_view_for():
    fryer = change_event("order_items", "INSERT", new={"station": "FREIDORA"})
    order = change_event("orders", "UPDATE", new={"id": 1, "status": "RECIBIDO", "customer_name": "Ana"},
                         old={"id": 1, "status": "RECIBIDO"}, stations=["PLANCHA", "PLANCHA"])
    deleted = change_event("orders", "DELETE", old={"id": 2}, stations=[])

    assert order["stations"] == ["PLANCHA"]
    assert view_for(fryer, "FREIDORA") == fryer
    assert view_for(fryer, "PLANCHA") is None
    assert view_for(fryer, None) == fryer
    assert view_for(order, "FREIDORA") is None
    assert view_for(order, "PLANCHA")["new"] == {"id": 1, "status": "RECIBIDO"}
    assert view_for(order, None)["new"]["customer_name"] == "Ana"
    assert "stations" not in view_for(order, None)
    assert view_for(deleted, "PLANCHA") is None
    assert view_for(deleted, None)["old"] == {"id": 2}


def test_purge_events_name_the_deleted_orders_stations(repository):
    async def scenario():
        queue = repository.feed.subscribe()
        created = repository.create_order(None, OrderCreate(type="DINEIN", items=[item(station="FREIDORA")]))
        repository.purge_orders([created.order_id])
        await asyncio.sleep(0)
        events = [queue.get_nowait() for _ in range(queue.qsize())]
        return created.order_id, events[-1]

    order_id, deleted = asyncio.run(scenario())
    assert deleted["event"] == "DELETE"
    assert deleted["old"] == {"id": order_id}
    assert deleted["stations"] == ["FREIDORA"]


def test_feed_drops_oldest_event_for_slow_subscribers():
    async def scenario():
        feed = ChangeFeed()
        queue = feed.subscribe()
        for number in range(300):
            feed.publish({"n": number})
        await asyncio.sleep(0)
        received = [queue.get_nowait() for _ in range(queue.qsize())]
        feed.unsubscribe(queue)
        return received, feed.subscriber_count

    received, remaining = asyncio.run(scenario())
    assert len(received) == 256
    assert received[0] == {"n": 44}
    assert received[-1] == {"n": 299}
    assert remaining == 0
