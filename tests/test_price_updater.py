# tests/test_price_updater.py
import dataclasses

import pytest

from exceptions import RemoteCallError
from models import ItemState, Operation
from services.price_updater import (
    PriceUpdateQueue,
    base_price_request,
    options_request,
    product_from_dict,
    variant_request,
)

from fakes import FakeCafe24, make_product


class FlakyCafe24(FakeCafe24):
    """update_product fails ``fail_times`` times per product before succeeding."""

    def __init__(self, fail_times=0):
        super().__init__()
        self.fail_times = fail_times
        self.attempts = {}

    def update_product(self, product_no, request, shop_no=1):
        n = self.attempts.get(product_no, 0) + 1
        self.attempts[product_no] = n
        self.product_calls.append(("price", product_no, request))
        if n <= self.fail_times:
            raise RemoteCallError("HTTP 503", endpoint=f"/admin/products/{product_no}", status=503)
        return {}


def make_queue(client, sleeps=None, clock=lambda: 0.0):
    return PriceUpdateQueue(
        client,
        requests_per_second=3,
        max_retries=3,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        clock=clock,
    )


def test_request_bodies():
    p = make_product()
    assert base_price_request(p) == {"price": "30000"}
    assert variant_request(p, 5) == {"additional_amount": "110000"}
    assert variant_request(p, 20) == {"additional_amount": "470000"}

    values = options_request(p)["options"][0]
    assert values["option_name"] == "중량"
    assert [v["option_text"] for v in values["option_value"]] == [
        "1kg (30,000원/kg)",
        "5kg (28,000원/kg)",
        "20kg (25,000원/kg)",
    ]


def test_two_products_enqueue_eight_items_in_step_order():
    queue = make_queue(FakeCafe24())
    assert queue.enqueue_products([make_product(1, "A"), make_product(2, "B")]) == 8

    items = queue.pending_items()
    assert [i.id for i in items[:4]] == ["1-base_price", "1-options", "1-variant_5kg", "1-variant_20kg"]
    assert [i.operation for i in items[4:]] == [
        Operation.BASE_PRICE, Operation.OPTIONS, Operation.VARIANT_5KG, Operation.VARIANT_20KG,
    ]
    assert all(i.state == ItemState.PENDING for i in items)
    assert queue.progress().total == 8


def test_run_calls_each_endpoint_and_paces_requests():
    client = FakeCafe24()
    sleeps = []
    progress = make_queue(client, sleeps).run([make_product(7)])

    assert [c[0] for c in client.product_calls] == ["price", "options", "variant", "variant"]
    assert client.product_calls[2][2] == "P000000A000B"
    assert client.product_calls[3][2] == "P000000A000C"
    assert sleeps == [pytest.approx(1 / 3)] * 3
    assert (progress.completed, progress.failed, progress.percentage) == (4, 0, 100)
    assert progress.running is False


def test_three_failures_then_success_is_completed():
    client = FlakyCafe24(fail_times=3)
    sleeps = []
    queue = make_queue(client, sleeps)
    queue.enqueue_products([make_product()])
    base_item = queue.pending_items()[0]

    progress = queue.process()

    assert base_item.state == ItemState.COMPLETED
    assert base_item.retry_count == 3
    assert [s for s in sleeps if s >= 1] == [2, 4, 8]
    assert progress.completed == 4
    assert progress.failed == 0
    assert progress.errors == ()


def test_four_failures_is_terminal_and_reported_once():
    client = FlakyCafe24(fail_times=99)
    sleeps = []
    queue = make_queue(client, sleeps)
    queue.enqueue_products([make_product(name="케냐 AA")])
    base_item = queue.pending_items()[0]

    progress = queue.process()

    assert base_item.state == ItemState.FAILED
    assert client.attempts[101] == 4
    assert [s for s in sleeps if s >= 1] == [2, 4, 8]
    assert progress.failed == 1
    assert progress.completed == 3
    assert len(progress.errors) == 1
    err = progress.errors[0]
    assert (err.entity_label, err.step_label) == ("케냐 AA", "기본가격 수정")
    assert "503" in err.error_message


def test_retry_goes_to_front_of_queue():
    client = FlakyCafe24(fail_times=1)
    make_queue(client).run([make_product(1), make_product(2)])

    order = [(c[0], c[1]) for c in client.product_calls]
    assert order[:3] == [("price", 1), ("price", 1), ("options", 1)]


def test_stop_pauses_and_resume_finishes():
    client = FakeCafe24()
    queue = make_queue(client)
    queue.enqueue_products([make_product()])

    def stop_after_first(snapshot):
        queue.stop()
        unsubscribe()

    unsubscribe = queue.subscribe(stop_after_first)
    paused = queue.process()

    assert paused.completed == 1
    assert paused.running is False
    assert len(queue.pending_items()) == 3

    assert queue.resume() is True
    done = queue.progress()
    assert done.completed == 4
    assert queue.pending_items() == []
    assert queue.resume() is False


def test_progress_snapshots_are_immutable_and_estimate_remaining_time():
    now = [0.0]

    class SlowCafe24(FakeCafe24):
        def update_product(self, product_no, request, shop_no=1):
            now[0] += 60
            return {}

    snapshots = []
    queue = make_queue(SlowCafe24(), clock=lambda: now[0])
    queue.subscribe(snapshots.append)
    queue.run([make_product()])

    first = snapshots[0]
    assert (first.completed, first.total, first.percentage) == (1, 4, 25)
    assert first.current_step == "기본가격 수정"
    assert first.estimated_remaining_minutes == 3
    with pytest.raises(dataclasses.FrozenInstanceError):
        first.completed = 99


def test_enqueue_while_running_is_rejected():
    queue = make_queue(FakeCafe24())
    queue.enqueue_products([make_product()])

    def try_enqueue(snapshot):
        with pytest.raises(RuntimeError):
            queue.enqueue_products([make_product(2)])

    queue.subscribe(try_enqueue)
    queue.process()


def test_unsubscribe_twice_is_harmless():
    seen = []
    queue = make_queue(FakeCafe24())
    unsubscribe = queue.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    queue.run([make_product()])
    assert seen == []


def test_product_from_dict():
    p = product_from_dict({
        "product_no": "12",
        "product_name": "콜롬비아",
        "base_price": "20000",
        "variant_5kg_code": "P0000A",
        "variant_20kg_code": "P0000B",
        "price_per_kg_1": 20000,
        "price_per_kg_5": 19000,
        "price_per_kg_20": 18000,
    })
    assert p.product_no == 12
    assert p.base_price == 20000
