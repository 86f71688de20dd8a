# app.py

import argparse
import json
import os
import uuid
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, List, Dict, Any, Sequence

# ---------------- CONFIG / CORE ----------------
from config import (
    ENV,
    ADMIN_EMAILS,
    DEFAULT_ORDER_STATUS,
    ORDER_LOOKBACK_DAYS,
    LOG_DIR,
    LOG_FILE,
)

from logger import get_logger
from emailer import send_email, upload_report_html, price_report_html
from exceptions import RemoteCallError, TokenUnavailableError

# ---------------- STATE DB / CAFE24 ----------------
from db import StateDB, SqliteTokenStore
from api import Cafe24Client
from models import DispatchSummary, MatchResult, Product, ShipmentRow, UpdateProgress

# ---------------- SHIPMENTS ----------------
from services.ingestion import read_shipment_file
from services.matcher import match_shipments
from services.bulk_dispatcher import dispatch_in_batches
from services.export import failure_csv, match_results_csv, write_export

# ---------------- PRICES ----------------
from services.price_updater import PriceUpdateQueue, product_from_dict


log = get_logger("app")

LOG_FILE_PATH = os.path.join(LOG_DIR, LOG_FILE)


def default_date_range(today: Optional[date] = None) -> Tuple[str, str]:
    today = today or date.today()
    start = today - timedelta(days=ORDER_LOOKBACK_DAYS)
    return start.isoformat(), today.isoformat()


def build_client(state_db: StateDB) -> Cafe24Client:
    state_db.init()
    return Cafe24Client(SqliteTokenStore(state_db))


def match_against_orders(
    client,
    shipments: Sequence[ShipmentRow],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    order_status: str = DEFAULT_ORDER_STATUS,
) -> MatchResult:
    if not start_date or not end_date:
        d_start, d_end = default_date_range()
        start_date, end_date = start_date or d_start, end_date or d_end

    orders = client.fetch_all_orders(start_date, end_date, order_status)
    result = match_shipments(orders, shipments)
    stats = result.statistics
    log.info(
        f"Matching done | shipments={stats['total_shipments']} exact={stats['exact_matches']} "
        f"partial={stats['partial_matches']} failed={stats['failed_matches']}"
    )
    return result


def ledger_items(result: MatchResult, summary: Optional[DispatchSummary]) -> List[Dict[str, Any]]:
    """One ledger row per shipment: MATCHED (dry run), REGISTERED, FAILED or UNMATCHED."""
    failed = {}
    if summary is not None:
        # an order is matched to at most one row, so order_id alone is the key
        failed = {f.order_id: f.error_message for f in summary.failed}

    items = []
    for m in result.matched:
        error = failed.get(m.order_id)
        if summary is None:
            status = "MATCHED"
        else:
            status = "FAILED" if error is not None else "REGISTERED"
        items.append({
            "source_row": m.source_row,
            "tracking_no": m.tracking_no,
            "order_id": m.order_id,
            "receiver_name": m.receiver_name,
            "match_type": m.match_type,
            "method": m.method,
            "status": status,
            "error": error,
        })
    for f in result.failures:
        items.append({
            "source_row": f.source_row,
            "tracking_no": f.tracking_no,
            "order_id": ",".join(f.possible_split_order_ids) or None,
            "receiver_name": f.shipment_name,
            "status": "UNMATCHED",
            "error": f.reason,
        })
    return items


def notify_upload_failures(
    run_id: str,
    file_name: str,
    result: MatchResult,
    summary: Optional[DispatchSummary],
    attachments: List[str],
) -> None:
    failed = summary.failed if summary else []
    if not failed and not result.failures:
        return

    html = upload_report_html(
        run_id,
        file_name,
        result.statistics,
        [(f.order_id, f.tracking_no, f.error_message) for f in failed],
        [
            (str(f.source_row), f.tracking_no, f.shipment_name, f.reason, ",".join(f.possible_split_order_ids))
            for f in result.failures
        ],
    )
    send_email(
        ADMIN_EMAILS,
        f"Shipment upload needs attention ({len(failed)} failed, {len(result.failures)} unmatched)",
        html,
        attachments,
    )


def process_shipments(
    client,
    state_db: StateDB,
    shipments: Sequence[ShipmentRow],
    file_name: str,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    order_status: str = DEFAULT_ORDER_STATUS,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Match already-parsed shipments against Cafe24 orders and, unless dry_run,
    register the matched tracking numbers. Every run is written to the ledger.
    """
    state_db.init()

    run_id = str(uuid.uuid4())
    start_ts = datetime.now(timezone.utc).isoformat()
    state_db.mark_run(run_id, start_ts, ENV, file_name, LOG_FILE_PATH, dry_run=dry_run)
    log.info(f"===== SHIPMENT UPLOAD START ===== run={run_id} file={file_name} dry_run={dry_run}")

    result = MatchResult()
    summary: Optional[DispatchSummary] = None
    exports: Dict[str, str] = {}

    try:
        result = match_against_orders(client, shipments, start_date, end_date, order_status)

        if result.matched and not dry_run:
            summary = dispatch_in_batches(client, result.matched)

        state_db.record_items(run_id, ledger_items(result, summary))

        exports["matches"] = write_export(f"shipment_matching_results_{run_id[:8]}", match_results_csv(result))
        if summary and summary.failed:
            exports["failures"] = write_export(f"failed_shipments_{run_id[:8]}", failure_csv(summary.failed))

        notify_upload_failures(run_id, file_name, result, summary, list(exports.values()))

    except (RemoteCallError, TokenUnavailableError) as e:
        log.error(f"Shipment upload {run_id} aborted: {e}")
        send_email(
            ADMIN_EMAILS,
            f"Shipment upload FAILED ({file_name})",
            f"<p><b>Run:</b> {run_id}</p><p><b>Error:</b> {e}</p>",
        )
        raise

    finally:
        end_ts = datetime.now(timezone.utc).isoformat()
        state_db.close_run(
            run_id,
            end_ts,
            shipments=len(shipments),
            matched=len(result.matched),
            unmatched=len(result.failures),
            succeeded=summary.succeeded if summary else 0,
            failed=len(summary.failed) if summary else 0,
        )
        log.info(f"===== SHIPMENT UPLOAD END ===== run={run_id}")

    return {
        "run_id": run_id,
        "dry_run": dry_run,
        "statistics": result.statistics,
        "registered": summary.succeeded if summary else 0,
        "failed": [asdict(f) for f in summary.failed] if summary else [],
        "exports": exports,
    }


def run_shipment_upload(
    client,
    state_db: StateDB,
    file_path: str,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    order_status: str = DEFAULT_ORDER_STATUS,
    dry_run: bool = False,
) -> Dict[str, Any]:
    shipments = read_shipment_file(file_path)
    return process_shipments(
        client,
        state_db,
        shipments,
        os.path.basename(file_path),
        start_date=start_date,
        end_date=end_date,
        order_status=order_status,
        dry_run=dry_run,
    )


def run_price_update(client, products: Sequence[Product], queue: Optional[PriceUpdateQueue] = None) -> UpdateProgress:
    queue = queue or PriceUpdateQueue(client)
    queue.enqueue_products(products)
    return drain_price_queue(queue)


def drain_price_queue(queue: PriceUpdateQueue) -> UpdateProgress:
    """Run the queued steps to completion (or until stopped) and mail admins about failures."""
    log.info(f"===== PRICE UPDATE START ===== pending={len(queue.pending_items())}")
    progress = queue.process()
    log.info(f"===== PRICE UPDATE END ===== pending={len(queue.pending_items())}")

    if progress.failed:
        send_email(
            ADMIN_EMAILS,
            f"Price update finished with {progress.failed} failed step(s)",
            price_report_html(progress.total, progress.completed, progress.failed, progress.errors),
        )
    return progress


def load_products(path: str) -> List[Product]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return [product_from_dict(d) for d in data]


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Cafe24 back-office batch jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    ship = sub.add_parser("shipments", help="Match a carrier spreadsheet and register tracking numbers")
    ship.add_argument("file")
    ship.add_argument("--start-date")
    ship.add_argument("--end-date")
    ship.add_argument("--status", default=DEFAULT_ORDER_STATUS)
    ship.add_argument("--dry-run", action="store_true")

    prices = sub.add_parser("prices", help="Push per-kg prices from a JSON product list")
    prices.add_argument("file")

    args = parser.parse_args(argv)

    state_db = StateDB()
    client = build_client(state_db)

    if args.command == "shipments":
        report = run_shipment_upload(
            client,
            state_db,
            args.file,
            start_date=args.start_date,
            end_date=args.end_date,
            order_status=args.status,
            dry_run=args.dry_run,
        )
        print(json.dumps(report, ensure_ascii=False, indent=2))
        return 1 if report["failed"] else 0

    progress = run_price_update(client, load_products(args.file))
    return 1 if progress.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
