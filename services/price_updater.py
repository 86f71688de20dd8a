# services/price_updater.py
"""
Rate-limited, retrying queue for bulk price changes.

Each product needs four sequential Cafe24 calls (base price, option labels,
5kg variant, 20kg variant). All of them are queued up front as WorkItems that
name an Operation; the call itself is looked up in OPERATIONS, so the queue
holds plain data and can be inspected at any time.

One worker drains the queue: one call in flight, then a 1/RPS pause. A failed
item goes back to the head of the queue after 2^n seconds, up to
max_retries times; after that it is a terminal failure.
"""
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import PRICE_UPDATE_MAX_RETRIES, PRICE_UPDATE_RPS
from models import (
    ItemState,
    Operation,
    Product,
    UpdateError,
    UpdateProgress,
    WorkItem,
)
from logger import get_logger

log = get_logger("price_updater")

OPTION_NAME = "중량"

STEP_LABELS = {
    Operation.BASE_PRICE: "기본가격 수정",
    Operation.OPTIONS: "옵션명 수정",
    Operation.VARIANT_5KG: "5kg 옵션 수정",
    Operation.VARIANT_20KG: "20kg 옵션 수정",
}
STEPS = (Operation.BASE_PRICE, Operation.OPTIONS, Operation.VARIANT_5KG, Operation.VARIANT_20KG)


# ---------- request bodies ----------
def base_price_request(product: Product) -> Dict[str, Any]:
    return {"price": str(product.base_price)}


def options_request(product: Product) -> Dict[str, Any]:
    return {
        "options": [{
            "option_name": OPTION_NAME,
            "option_value": [
                {"option_text": f"1kg ({product.price_per_kg_1:,}원/kg)"},
                {"option_text": f"5kg ({product.price_per_kg_5:,}원/kg)"},
                {"option_text": f"20kg ({product.price_per_kg_20:,}원/kg)"},
            ],
        }]
    }


def variant_request(product: Product, kg: int) -> Dict[str, Any]:
    per_kg = product.price_per_kg_5 if kg == 5 else product.price_per_kg_20
    return {"additional_amount": str(per_kg * kg - product.base_price)}


# ---------- dispatch table ----------
def _apply_base_price(client, product: Product):
    return client.update_product(product.product_no, base_price_request(product))

def _apply_options(client, product: Product):
    return client.update_product_options(product.product_no, options_request(product))

def _apply_variant_5kg(client, product: Product):
    return client.update_product_variant(product.product_no, product.variant_5kg_code, variant_request(product, 5))

def _apply_variant_20kg(client, product: Product):
    return client.update_product_variant(product.product_no, product.variant_20kg_code, variant_request(product, 20))

OPERATIONS: Dict[Operation, Callable[[Any, Product], Any]] = {
    Operation.BASE_PRICE: _apply_base_price,
    Operation.OPTIONS: _apply_options,
    Operation.VARIANT_5KG: _apply_variant_5kg,
    Operation.VARIANT_20KG: _apply_variant_20kg,
}


def product_from_dict(d: Dict[str, Any]) -> Product:
    return Product(
        product_no=int(d["product_no"]),
        product_name=str(d.get("product_name") or d["product_no"]),
        base_price=int(d["base_price"]),
        variant_5kg_code=str(d["variant_5kg_code"]),
        variant_20kg_code=str(d["variant_20kg_code"]),
        price_per_kg_1=int(d["price_per_kg_1"]),
        price_per_kg_5=int(d["price_per_kg_5"]),
        price_per_kg_20=int(d["price_per_kg_20"]),
    )


def work_items_for(product: Product) -> List[WorkItem]:
    return [
        WorkItem(
            id=f"{product.product_no}-{op.value}",
            operation=op,
            product=product,
            entity_label=product.product_name,
            step_label=STEP_LABELS[op],
        )
        for op in STEPS
    ]


class PriceUpdateQueue:

    def __init__(
        self,
        client,
        requests_per_second: float = PRICE_UPDATE_RPS,
        max_retries: int = PRICE_UPDATE_MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        operations: Optional[Dict[Operation, Callable]] = None,
    ):
        self.client = client
        self.interval = 1.0 / requests_per_second
        self.max_retries = max_retries
        self.sleep = sleep
        self.clock = clock
        self.operations = operations or OPERATIONS

        self._queue: deque = deque()
        self._running = False
        self._stop_requested = False
        self._lock = threading.Lock()
        self._observers: List[Callable[[UpdateProgress], None]] = []

        self._start = self.clock()
        self._total = 0
        self._completed = 0
        self._failed = 0
        self._current_entity = ""
        self._current_step = ""
        self._errors: List[UpdateError] = []

    # ---------- observers ----------
    def subscribe(self, callback: Callable[[UpdateProgress], None]) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.progress()
        for cb in list(self._observers):
            cb(snapshot)
        log.info(
            f"Progress {snapshot.percentage}% ({snapshot.completed}/{snapshot.total}) | "
            f"failed={snapshot.failed} | eta={snapshot.estimated_remaining_minutes}min"
        )

    # ---------- state ----------
    @property
    def running(self) -> bool:
        return self._running

    def progress(self) -> UpdateProgress:
        with self._lock:
            percentage = round(self._completed / self._total * 100) if self._total else 0
            remaining = 0
            if self._completed > 0:
                elapsed = self.clock() - self._start
                per_item = elapsed / self._completed
                remaining = round((self._total - self._completed) * per_item / 60)
            return UpdateProgress(
                total=self._total,
                completed=self._completed,
                failed=self._failed,
                current_entity=self._current_entity,
                current_step=self._current_step,
                percentage=percentage,
                errors=tuple(self._errors),
                estimated_remaining_minutes=remaining,
                running=self._running,
            )

    def pending_items(self) -> List[WorkItem]:
        with self._lock:
            return list(self._queue)

    # ---------- control ----------
    def enqueue_products(self, products: Iterable[Product]) -> int:
        if self._running:
            raise RuntimeError("Price update already running")
        items = [item for p in products for item in work_items_for(p)]
        with self._lock:
            self._queue = deque(items)
            self._total = len(items)
            self._completed = 0
            self._failed = 0
            self._errors = []
            self._current_entity = ""
            self._current_step = ""
            self._start = self.clock()
        log.info(f"Queued {len(items)} price update step(s)")
        return len(items)

    def run(self, products: Iterable[Product]) -> UpdateProgress:
        self.enqueue_products(products)
        return self.process()

    def process(self) -> UpdateProgress:
        """Drain whatever is queued; returns early if stop() was called."""
        self._drain()
        if not self._queue:
            self.log_final_report()
        return self.progress()

    def stop(self) -> None:
        """Pause after the item in flight; queue and counters are kept."""
        self._stop_requested = True
        log.info("Stop requested; pausing after current item")

    def resume(self) -> bool:
        if self._running or not self._queue:
            return False
        log.info(f"Resuming with {len(self._queue)} item(s) left")
        self.process()
        return True

    # ---------- worker ----------
    def _drain(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_requested = False
        try:
            while self._queue and not self._stop_requested:
                with self._lock:
                    item = self._queue.popleft()
                    item.state = ItemState.PROCESSING
                    self._current_entity = item.entity_label
                    self._current_step = item.step_label

                self._process(item)
                self._notify()

                if self._queue and not self._stop_requested:
                    self.sleep(self.interval)
        finally:
            self._running = False

    def _process(self, item: WorkItem) -> None:
        try:
            log.debug(f"Processing {item.entity_label} - {item.step_label} (attempt {item.retry_count + 1})")
            self.operations[item.operation](self.client, item.product)
        except Exception as e:
            self._handle_error(item, e)
            return

        item.state = ItemState.COMPLETED
        with self._lock:
            self._completed += 1
        log.info(f"Completed {item.entity_label} - {item.step_label}")

    def _handle_error(self, item: WorkItem, error: Exception) -> None:
        log.error(f"Failed {item.entity_label} - {item.step_label}: {error}")

        if item.retry_count < self.max_retries:
            item.retry_count += 1
            item.state = ItemState.RETRYING
            delay = 2 ** item.retry_count
            log.info(f"Retry {item.retry_count}/{self.max_retries} for {item.id} in {delay}s")
            self.sleep(delay)
            with self._lock:
                self._queue.appendleft(item)
            return

        item.state = ItemState.FAILED
        with self._lock:
            self._failed += 1
            self._errors.append(UpdateError(
                entity_label=item.entity_label,
                step_label=item.step_label,
                error_message=str(error),
                timestamp=datetime.now(timezone.utc),
            ))
        log.error(f"Giving up on {item.id} after {item.retry_count} retries")

    def log_final_report(self) -> None:
        p = self.progress()
        minutes = round((self.clock() - self._start) / 60)
        rate = round(p.completed / p.total * 100) if p.total else 0
        log.info(
            f"===== PRICE UPDATE REPORT ===== duration={minutes}min completed={p.completed} "
            f"failed={p.failed} success_rate={rate}%"
        )
        for err in p.errors:
            log.info(f"  - {err.entity_label} ({err.step_label}): {err.error_message}")
