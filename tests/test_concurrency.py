import threading
from concurrent.futures import ThreadPoolExecutor

from conftest import item
from pos_service.auth import CallerIdentity, Role
from pos_service.changes import ChangeFeed
from pos_service.item_status import ItemStatusEngine
from pos_service.repository import OrderRepository
from pos_service.schemas import OrderCreate

ADMIN = CallerIdentity(role=Role.ADMIN, user_id=1)
PLANCHA = CallerIdentity(role=Role.PLANCHA, user_id=2)
FREIDORA = CallerIdentity(role=Role.FREIDORA, user_id=3)


def takeout(*items):
    return OrderCreate(type="TAKEOUT", items=list(items))


def test_concurrent_creates_get_distinct_sequential_numbers(repository):
    workers = 8
    per_worker = 5
    barrier = threading.Barrier(workers)

    def create_many(_):
        barrier.wait()
        return [
            repository.create_order(None, takeout(item(price=1000, qty=2), item(price=500, station="FREIDORA")))
            for _ in range(per_worker)
        ]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = [created for batch in pool.map(create_many, range(workers)) for created in batch]

    numbers = sorted(created.order_number for created in results)
    assert numbers == list(range(1, workers * per_worker + 1))
    assert all(created.order.total_cents == 2500 for created in results)
    assert all(created.order.subtotal_cents == 2500 for created in results)


def test_last_two_items_racing_promote_exactly_once(database):
    feed = ChangeFeed()
    repository = OrderRepository(database, feed)
    engine = ItemStatusEngine(database, feed)

    for _ in range(5):
        created = repository.create_order(None, takeout(item(station="PLANCHA"), item(station="FREIDORA")))
        grill_item, fryer_item = created.order.items
        barrier = threading.Barrier(2)

        def finish(identity, item_id):
            barrier.wait()
            return engine.set_item_status(identity, item_id, "LISTO")

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(finish, PLANCHA, grill_item.id),
                pool.submit(finish, FREIDORA, fryer_item.id),
            ]
            results = [future.result() for future in futures]

        assert sum(result.order_promoted for result in results) == 1
        order = repository.get_order(ADMIN, created.order_id)
        assert order.status == "LISTO_PARA_EMPACAR"
        assert {i.status for i in order.items} == {"LISTO"}


def test_print_flag_race_keeps_the_first_timestamp(repository):
    created = repository.create_order(None, takeout(item()))
    barrier = threading.Barrier(4)

    def mark(_):
        barrier.wait()
        return repository.mark_printed(ADMIN, created.order_id, "customer").printed_customer_at

    with ThreadPoolExecutor(max_workers=4) as pool:
        stamps = set(pool.map(mark, range(4)))

    assert len(stamps) == 1
