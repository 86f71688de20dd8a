# tests/test_ingestion.py
import pytest
from openpyxl import Workbook

from exceptions import MissingColumnError
from services.ingestion import (
    clean_tracking_no,
    detect_columns,
    parse_rows,
    read_shipment_file,
    read_shipment_upload,
)

HEADERS = [
    "번호", "송하인명", "송하인전화", "송하인주소",
    "운송장번호", "수하인명", "수하인전화번호", "수하인우편번호", "수하인주소",
]


def carrier_row(tracking, name, phone, zipcode, address):
    return [1, "소펙스코리아", "02-000-0000", "서울 성동구 성수이로 1", tracking, name, phone, zipcode, address]


def write_xlsx(path, rows):
    wb = Workbook()
    ws = wb.active
    for r in rows:
        ws.append(r)
    wb.save(path)
    return str(path)


def test_detect_columns_skips_sender_side():
    cols = detect_columns(HEADERS)
    assert cols == {
        "tracking_no": 4,
        "receiver_name": 5,
        "receiver_phone": 6,
        "receiver_zipcode": 7,
        "receiver_address": 8,
    }


def test_phone_and_zipcode_are_optional():
    cols = detect_columns(["운송장번호", "받는분", "수하인주소"])
    assert cols["receiver_phone"] is None
    assert cols["receiver_zipcode"] is None
    assert cols["receiver_address"] == 2


def test_missing_required_columns_are_named():
    with pytest.raises(MissingColumnError) as exc:
        detect_columns(["번호", "송하인명", "송하인주소"])
    assert exc.value.missing == ["운송장번호", "수하인명(받는분)", "주소"]


def test_sender_address_alone_does_not_count():
    with pytest.raises(MissingColumnError) as exc:
        detect_columns(["운송장번호", "수하인명", "송하인주소"])
    assert exc.value.missing == ["주소"]


@pytest.mark.parametrize("raw,expected", [
    ("4.60012345678E+11", "460012345678"),
    ("4.60012345678e+11", "460012345678"),
    ("123456.0", "123456"),
    (460012345678.0, "460012345678"),
    (460012345678, "460012345678"),
    (" 5678 ", "5678"),
])
def test_clean_tracking_no(raw, expected):
    assert clean_tracking_no(raw) == expected


def test_parse_rows_dedups_and_skips_blank_tracking():
    rows = [
        HEADERS,
        carrier_row("1001", "정형준", "010-1234-5678", "06159", "서울 강남구 테헤란로 123"),
        carrier_row("1002", "정 형준", "010-1234-5678", "06159", "서울 강남구 테헤란로 123"),
        carrier_row(None, "김영수", "010-9876-5432", "14060", "경기 안양시 동안구 귀인로 172번길 42"),
        carrier_row("1003", "김영수", "010-9876-5432", "14060", "경기 안양시 동안구 귀인로 172번길 42"),
    ]
    shipments = parse_rows(rows)

    assert [(s.tracking_no, s.receiver_name, s.source_row) for s in shipments] == [
        ("1001", "정형준", 2),
        ("1003", "김영수", 5),
    ]
    assert shipments[0].receiver_phone == "010-1234-5678"
    assert shipments[0].receiver_zipcode == "06159"


def test_short_rows_do_not_break_parsing():
    rows = [["운송장번호", "받는분", "수하인주소", "수하인전화"], ["1001", "정형준", "서울 강남구 테헤란로 123"]]
    shipments = parse_rows(rows)
    assert shipments[0].receiver_phone == ""


def test_empty_sheet_is_missing_columns():
    with pytest.raises(MissingColumnError):
        parse_rows([])


def test_read_xlsx_file(tmp_path):
    path = write_xlsx(tmp_path / "9-9운송장.xlsx", [
        HEADERS,
        carrier_row(460012345678, "박병준", "010-5555-1234", "11413", "경기 양주시 부흥로 2278-13 나동"),
        carrier_row("4.60012345679E+11", "그린로더*", "02-123-4567", "05540", "서울 송파구 올림픽로 300"),
    ])
    shipments = read_shipment_file(path)

    assert [s.tracking_no for s in shipments] == ["460012345678", "460012345679"]
    assert shipments[1].receiver_name == "그린로더*"
    assert shipments[1].source_row == 3


def test_read_uploaded_csv_in_cp949():
    text = "운송장번호,수하인명,수하인주소\n1001,정형준,서울 강남구 테헤란로 123\n"
    shipments = read_shipment_upload("ship.csv", text.encode("cp949"))
    assert shipments[0].tracking_no == "1001"
    assert shipments[0].receiver_address == "서울 강남구 테헤란로 123"


def test_read_uploaded_xlsx_bytes(tmp_path):
    path = write_xlsx(tmp_path / "u.xlsx", [HEADERS, carrier_row("1001", "정형준", "", "", "서울 강남구 테헤란로 123")])
    with open(path, "rb") as f:
        shipments = read_shipment_upload("u.xlsx", f.read())
    assert len(shipments) == 1
