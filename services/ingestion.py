# services/ingestion.py
"""
Carrier spreadsheet -> de-duplicated ShipmentRow list.

Carrier exports put sender (송하인) and receiver (수하인) columns side by
side, so receiver columns are found by keyword and any header mentioning the
sender is rejected outright.
"""
import csv
import io
import os
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from openpyxl import load_workbook

from exceptions import MissingColumnError
from models import ShipmentRow
from services.normalizer import normalize_compact
from logger import get_logger

log = get_logger("ingestion")

SENDER_KEYWORD = "송하인"
RECEIVER_KEYWORD = "수하인"

# Labels reported in MissingColumnError
LABEL_TRACKING = "운송장번호"
LABEL_NAME = "수하인명(받는분)"
LABEL_ADDRESS = "주소"

_TRAILING_ZERO_RE = re.compile(r"\.0+$")


def _is_tracking_header(h: str) -> bool:
    return "운송장" in h or "송장" in h


def _is_name_header(h: str) -> bool:
    return any(k in h for k in ("받는분", "수령자", "수취인", RECEIVER_KEYWORD))


def _is_phone_header(h: str) -> bool:
    if SENDER_KEYWORD in h:
        return False
    return "전화" in h or "연락처" in h


def _is_zipcode_header(h: str) -> bool:
    if SENDER_KEYWORD in h:
        return False
    return "우편" in h  # 우편번호, 수하인우편번호, ...


def _is_address_header(h: str) -> bool:
    if SENDER_KEYWORD in h:
        return False
    return "수하인주소" in h or (RECEIVER_KEYWORD in h and "주소" in h)


def find_column(headers: Sequence[Any], predicate: Callable[[str], bool]) -> Optional[int]:
    for idx, h in enumerate(headers):
        if h is None:
            continue
        text = str(h).strip()
        if text and predicate(text):
            return idx
    return None


def detect_columns(headers: Sequence[Any]) -> Dict[str, Optional[int]]:
    """
    Locate the logical columns in a header row. Tracking number, name and
    address are required; phone and zipcode may be absent.
    """
    columns = {
        "tracking_no": find_column(headers, _is_tracking_header),
        "receiver_name": find_column(headers, _is_name_header),
        "receiver_phone": find_column(headers, _is_phone_header),
        "receiver_zipcode": find_column(headers, _is_zipcode_header),
        "receiver_address": find_column(headers, _is_address_header),
    }

    missing = []
    if columns["tracking_no"] is None:
        missing.append(LABEL_TRACKING)
    if columns["receiver_name"] is None:
        missing.append(LABEL_NAME)
    if columns["receiver_address"] is None:
        missing.append(LABEL_ADDRESS)
    if missing:
        log.error(f"Missing required column(s) {missing}; headers={list(headers)}")
        raise MissingColumnError(missing, [str(h) for h in headers if h is not None])

    log.info(f"Detected columns: {columns}")
    return columns


def cell_text(value) -> str:
    """Spreadsheet cell -> string the way it reads on screen (12.0 -> '12')."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def clean_tracking_no(value) -> str:
    tracking = cell_text(value)
    if "E+" in tracking or "e+" in tracking:
        try:
            tracking = format(Decimal(tracking), "f")
        except InvalidOperation:
            log.warning(f"Unparseable scientific tracking number {tracking!r}")
    return _TRAILING_ZERO_RE.sub("", tracking)


def dedup_key(name: str, zipcode: str, address: str) -> str:
    return f"{normalize_compact(name)}|{zipcode}|{normalize_compact(address)}"


def _cell(row: Sequence[Any], idx: Optional[int]):
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def parse_rows(rows: Iterable[Sequence[Any]]) -> List[ShipmentRow]:
    """
    First row is the header. Rows without a tracking number are skipped; for
    repeated (name, zipcode, address) only the first row is kept.
    """
    it = iter(rows)
    try:
        headers = list(next(it))
    except StopIteration:
        raise MissingColumnError([LABEL_TRACKING, LABEL_NAME, LABEL_ADDRESS])

    cols = detect_columns(headers)
    unique: Dict[str, ShipmentRow] = {}
    skipped = 0
    duplicates = 0

    for row_num, row in enumerate(it, start=2):
        row = list(row)
        raw_tracking = _cell(row, cols["tracking_no"])
        if not cell_text(raw_tracking):
            skipped += 1
            continue

        name = cell_text(_cell(row, cols["receiver_name"]))
        zipcode = cell_text(_cell(row, cols["receiver_zipcode"]))
        address = cell_text(_cell(row, cols["receiver_address"]))

        key = dedup_key(name, zipcode, address)
        if key in unique:
            duplicates += 1
            continue

        unique[key] = ShipmentRow(
            tracking_no=clean_tracking_no(raw_tracking),
            receiver_name=name,
            receiver_phone=cell_text(_cell(row, cols["receiver_phone"])),
            receiver_zipcode=zipcode,
            receiver_address=address,
            source_row=row_num,
        )

    shipments = list(unique.values())
    log.info(
        f"Extracted {len(shipments)} unique shipment(s) "
        f"(skipped {skipped} without tracking no, dropped {duplicates} duplicate(s))"
    )
    return shipments


def _read_xlsx_rows(source) -> List[tuple]:
    wb = load_workbook(source, read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        return [tuple(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv_rows(data: bytes) -> List[list]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("cp949")  # Korean Excel "Save as CSV" default
    return list(csv.reader(io.StringIO(text)))


def read_shipment_file(path: str) -> List[ShipmentRow]:
    ext = os.path.splitext(path)[1].lower()
    log.info(f"Reading shipment file {path}")
    if ext == ".csv":
        with open(path, "rb") as f:
            return parse_rows(_read_csv_rows(f.read()))
    return parse_rows(_read_xlsx_rows(path))


def read_shipment_upload(filename: str, data: bytes) -> List[ShipmentRow]:
    """Same as read_shipment_file, for an in-memory upload."""
    ext = os.path.splitext(filename or "")[1].lower()
    log.info(f"Reading uploaded shipment file {filename} ({len(data)} bytes)")
    if ext == ".csv":
        return parse_rows(_read_csv_rows(data))
    return parse_rows(_read_xlsx_rows(io.BytesIO(data)))
