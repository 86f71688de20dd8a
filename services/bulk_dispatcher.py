# services/bulk_dispatcher.py
from typing import Any, Dict, List, Sequence

from config import (
    BULK_MAX_BATCH,
    DEFAULT_SHIPPING_COMPANY_CODE,
    DEFAULT_SHIPMENT_STATUS,
    SHOP_NO,
)
from exceptions import RemoteCallError, ShipmentFormatError, TokenUnavailableError, ValidationError
from models import DispatchSummary, FailedShipment, MatchAssignment
from logger import get_logger

log = get_logger("bulk_dispatcher")


def validate_batch(assignments: Sequence[MatchAssignment], max_batch: int = BULK_MAX_BATCH) -> None:
    if not assignments:
        raise ValidationError("No shipments to register (empty batch).")
    if len(assignments) > max_batch:
        raise ValidationError(
            f"At most {max_batch} shipments per call; got {len(assignments)}. Split the batch."
        )


def build_shipments_payload(assignments: Sequence[MatchAssignment]) -> List[Dict[str, Any]]:
    return [
        {
            "order_id": a.order_id,
            "tracking_no": a.tracking_no,
            "shipping_company_code": a.shipping_company_code or DEFAULT_SHIPPING_COMPANY_CODE,
            "status": a.status or DEFAULT_SHIPMENT_STATUS,
        }
        for a in assignments
    ]


def _failed_from_provider(item: Dict[str, Any], sent: Dict[str, str]) -> FailedShipment:
    # failed_orders entries may omit tracking_no; fall back to what was sent
    order_id = str(item.get("order_id") or "")
    return FailedShipment(
        order_id=order_id,
        tracking_no=str(item.get("tracking_no") or sent.get(order_id, "")),
        error_message=str(item.get("error") or item.get("message") or "등록 실패"),
    )


def dispatch(client, assignments: Sequence[MatchAssignment], shop_no: int = SHOP_NO) -> DispatchSummary:
    """
    Register one batch (1..BULK_MAX_BATCH) of tracking numbers in a single call.

    Raises ValidationError before any network call, ShipmentFormatError on a
    422 and RemoteCallError on any other failure. Per-item failures reported
    inside a 2xx response are returned in ``summary.failed``; nothing is retried.
    """
    validate_batch(assignments)

    shipments = build_shipments_payload(assignments)
    log.info(f"Registering {len(shipments)} shipment(s)")
    result = client.register_shipments(shipments, shop_no)

    if not result.ok:
        details = result.details if result.details is not None else result.payload
        if result.status_code == 422:
            log.error(f"Tracking number format rejected (422): {result.raw_text}")
            raise ShipmentFormatError(
                "일부 송장번호 형식이 올바르지 않습니다.",
                endpoint=result.endpoint,
                status=422,
                error_message=result.error_message,
                details=details,
                raw_response_text=result.raw_text,
            )
        log.error(f"Bulk registration failed: {result.status_code} {result.raw_text}")
        raise RemoteCallError(
            result.error_message or "대량 송장 등록 실패",
            endpoint=result.endpoint,
            status=result.status_code,
            error_message=result.error_message,
            details=details,
            raw_response_text=result.raw_text,
        )

    data = result.payload or {}
    sent = {s["order_id"]: s["tracking_no"] for s in shipments}
    summary = DispatchSummary(
        total=len(shipments),
        succeeded=len(data.get("shipments") or []),
        failed=[_failed_from_provider(f, sent) for f in data.get("failed_orders") or []],
    )
    log.info(f"Batch done: succeeded={summary.succeeded} failed={len(summary.failed)}")
    return summary


def dispatch_in_batches(
    client,
    assignments: Sequence[MatchAssignment],
    batch_size: int = BULK_MAX_BATCH,
    shop_no: int = SHOP_NO,
) -> DispatchSummary:
    """
    Split into <= batch_size chunks and dispatch each. A batch that fails as a
    whole is recorded item by item with the provider's message and the next
    batch still runs.
    """
    if not assignments:
        raise ValidationError("No shipments to register (empty batch).")
    batch_size = min(batch_size, BULK_MAX_BATCH)

    total = DispatchSummary()
    batches = [assignments[i:i + batch_size] for i in range(0, len(assignments), batch_size)]

    for n, batch in enumerate(batches, start=1):
        log.info(f"Batch {n}/{len(batches)}: {len(batch)} shipment(s)")
        try:
            total.merge(dispatch(client, batch, shop_no))
        except (RemoteCallError, TokenUnavailableError) as e:
            message = str(e)
            if isinstance(e, RemoteCallError) and e.details:
                message = f"{message} | {e.details}"
            log.error(f"Batch {n}/{len(batches)} failed entirely: {message}")
            total.merge(DispatchSummary(
                total=len(batch),
                succeeded=0,
                failed=[FailedShipment(a.order_id, a.tracking_no, message) for a in batch],
            ))

    log.info(f"Dispatch finished | total={total.total} succeeded={total.succeeded} failed={len(total.failed)}")
    return total
