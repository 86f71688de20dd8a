# scripts/simulate_matching.py
# Dry-run the matcher without touching Cafe24:
#   python scripts/simulate_matching.py                 -> built-in sample data
#   python scripts/simulate_matching.py 9-9운송장.xlsx   -> real carrier file vs sample orders

import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from models import OrderRecord, ShipmentRow
from services.ingestion import read_shipment_file
from services.matcher import build_customer_index, match_shipments
from services.export import match_results_csv, write_export


SAMPLE_ORDERS = [
    OrderRecord("20250909001", "정형준", "010-1234-5678", "서울특별시 강남구 테헤란로 123 ABC빌딩 5층", "N20", "배송대기"),
    OrderRecord("20250909002", "정형준", "010-1234-5678", "서울특별시 강남구 테헤란로 456 DEF센터 2층", "N20", "배송대기"),
    OrderRecord("20250909003", "김영수", "010-9876-5432", "경기도 안양시 동안구 귀인로 172번길 42", "N20", "배송대기"),
    OrderRecord("20250909004", "박병준 고객*", "010-5555-1234", "경기도 양주시 부흥로 2278-13", "N20", "배송대기"),
    OrderRecord("20250909005", "주식회사 그린로더", "02-123-4567", "서울특별시 송파구 올림픽로 300", "N20", "배송대기"),
]

SAMPLE_SHIPMENTS = [
    ShipmentRow("460012345678901234", "정형준", "010-1234-5678", "06159", "서울 강남구 테헤란로 123 ABC빌딩 5층", 2),
    ShipmentRow("460012345678901235", "김영수", "010-9876-5432", "14060", "경기 안양시 동안구 귀인로172번길42 1층 숨맑은집", 3),
    ShipmentRow("460012345678901236", "박병준", "010-5555-1234", "11413", "경기 양주시 부흥로 2278-13 나동 다비스터", 4),
    ShipmentRow("460012345678901237", "그린로더*", "02-123-4567", "05540", "서울 송파구 올림픽로 300", 5),
    ShipmentRow("460012345678901238", "이미연", "010-7777-8888", "48060", "부산 해운대구 센텀중앙로 100", 6),
]


def print_result(orders, result):
    stats = result.statistics
    total = stats["total_shipments"] or 1
    matched = stats["exact_matches"] + stats["partial_matches"]

    print("=" * 60)
    print(f"Orders:     {len(orders)}")
    print(f"Shipments:  {stats['total_shipments']}")
    print(f"Exact:      {stats['exact_matches']}")
    print(f"Partial:    {stats['partial_matches']}")
    print(f"Unmatched:  {stats['failed_matches']}")
    print(f"Match rate: {round(matched / total * 100)}%")
    print("=" * 60)

    for m in result.matched:
        print(f"  OK   row {m.source_row:>4} {m.tracking_no} -> {m.order_id} {m.receiver_name} [{m.match_type}/{m.method}]")
    for f in result.failures:
        hint = f" (split order? {', '.join(f.possible_split_order_ids)})" if f.possible_split_order_ids else ""
        print(f"  FAIL row {f.source_row:>4} {f.tracking_no} {f.shipment_name}: {f.reason}{hint}")

    repeat = {k: v for k, v in build_customer_index(orders).items() if len(v) > 1}
    if repeat:
        print("\nCustomers with several open orders:")
        for name, ids in repeat.items():
            print(f"  {name}: {', '.join(ids)}")


def main(argv):
    shipments = read_shipment_file(argv[1]) if len(argv) > 1 else SAMPLE_SHIPMENTS
    result = match_shipments(SAMPLE_ORDERS, shipments)
    print_result(SAMPLE_ORDERS, result)

    path = write_export("shipment_matching_results", match_results_csv(result))
    print(f"\nResult file: {path}")


if __name__ == "__main__":
    main(sys.argv)
