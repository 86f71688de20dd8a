# services/export.py
import csv
import io
import os
from datetime import datetime
from typing import Iterable, Optional

from config import EXPORT_DIR
from models import FailedShipment, MatchResult
from logger import get_logger

log = get_logger("export")

BOM = "\ufeff"

FAILURE_HEADER = ["order_id", "tracking_no", "error_message"]
MATCH_HEADER = ["구분", "주문번호", "수취인", "주소", "송장번호", "매칭타입", "매칭방법"]

MATCH_TYPE_LABELS = {"exact": "정확", "partial": "부분"}


def failure_csv(failed: Iterable[FailedShipment]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(FAILURE_HEADER)
    for f in failed:
        w.writerow([f.order_id, f.tracking_no, f.error_message])
    return buf.getvalue()


def match_results_csv(result: MatchResult) -> str:
    """Successes then failures; Excel needs the BOM to read Korean as UTF-8."""
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow(MATCH_HEADER)
    for m in result.matched:
        w.writerow([
            "성공",
            m.order_id,
            m.receiver_name,
            m.receiver_address,
            m.tracking_no,
            MATCH_TYPE_LABELS.get(m.match_type, m.match_type),
            m.method,
        ])
    for f in result.failures:
        w.writerow([
            "실패",
            ",".join(f.possible_split_order_ids),
            f.shipment_name,
            f.shipment_address,
            f.tracking_no,
            "실패",
            f.reason,
        ])
    return BOM + buf.getvalue()


def write_export(prefix: str, content: str, export_dir: Optional[str] = None) -> str:
    export_dir = export_dir or EXPORT_DIR
    os.makedirs(export_dir, exist_ok=True)
    path = os.path.join(export_dir, f"{prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv")
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    log.info(f"Wrote export {path}")
    return path
