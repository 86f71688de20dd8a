# services/matcher.py
"""
Assign carrier shipment rows to open Cafe24 orders.

Rows are processed in input order. For each row the tiers below are tried
until one yields exactly one unconsumed order:

  1. name            normalize_name equality (or masked-name similarity)
                     -> if several, narrowed by normalized address overlap
  2. phone           normalize_phone equality
  3. address         normalized / base address equality or containment
  4. enhanced name   title- and company-stripped names or masked similarity
                     -> if several, narrowed by base address overlap

An order is consumed by at most one row. Ambiguity is never broken by taking
the first candidate: the row either narrows to one order or falls through,
and ends up as a MatchFailure with split-order hints.
"""
from typing import Dict, Iterable, List, NamedTuple, Sequence

from models import (
    MatchAssignment,
    MatchFailure,
    MatchLogEntry,
    MatchResult,
    OrderRecord,
    ShipmentRow,
)
from services.normalizer import (
    MASK_CHAR,
    are_names_similar_with_masking,
    extract_base_address,
    normalize_address,
    normalize_company_name,
    normalize_name,
    normalize_name_enhanced,
    normalize_phone,
)
from logger import get_logger

log = get_logger("matcher")

EXACT = "exact"
PARTIAL = "partial"

METHOD_NAME = "name"
METHOD_NAME_ADDRESS = "name+address"
METHOD_PHONE = "phone"
METHOD_ADDRESS = "address"
METHOD_ENHANCED_NAME = "enhanced-name"
METHOD_ENHANCED_NAME_ADDRESS = "enhanced-name+address"

REASON_NO_MATCH = "no matching order"
REASON_AMBIGUOUS = "ambiguous: several candidate orders"

MIN_ADDRESS_LENGTH = 5


class _OrderKeys(NamedTuple):
    order: OrderRecord
    name: str
    name_enhanced: str
    company: str
    phone: str
    address: str
    address_base: str       # base of the normalized address (tier 3)
    raw_address_base: str   # base of the raw address (tier 4)


def _keys_for(order: OrderRecord) -> _OrderKeys:
    address = normalize_address(order.receiver_address)
    return _OrderKeys(
        order=order,
        name=normalize_name(order.receiver_name),
        name_enhanced=normalize_name_enhanced(order.receiver_name),
        company=normalize_company_name(order.receiver_name),
        phone=normalize_phone(order.receiver_phone),
        address=address,
        address_base=extract_base_address(address),
        raw_address_base=extract_base_address(order.receiver_address),
    )


def _overlaps(a: str, b: str) -> bool:
    """Equal, or one contains the other. Empty keys never overlap."""
    if not a or not b:
        return False
    return a == b or a in b or b in a


def name_variants(name) -> List[str]:
    variants = []
    for v in (normalize_name(name), normalize_name_enhanced(name), normalize_company_name(name)):
        if v and v not in variants:
            variants.append(v)
    return variants


def build_customer_index(orders: Iterable[OrderRecord]) -> Dict[str, List[str]]:
    """name variant -> [order_id, ...] over every order, used only for split-order hints."""
    index: Dict[str, List[str]] = {}
    for order in orders:
        for variant in name_variants(order.receiver_name):
            ids = index.setdefault(variant, [])
            if order.order_id not in ids:
                ids.append(order.order_id)
    return index


def possible_split_orders(index: Dict[str, List[str]], name, consumed: set) -> List[str]:
    found: Dict[str, None] = {}
    for variant in name_variants(name):
        for order_id in index.get(variant, []):
            if order_id not in consumed:
                found[order_id] = None
    return list(found)


# ---------- tier filters ----------
def _tier1_name(pool: Sequence[_OrderKeys], shipment: ShipmentRow, ship_name: str) -> List[_OrderKeys]:
    out = []
    ship_masked = MASK_CHAR in (shipment.receiver_name or "")
    for k in pool:
        if ship_name and k.name == ship_name:
            out.append(k)
        elif (ship_masked or MASK_CHAR in (k.order.receiver_name or "")) and \
                are_names_similar_with_masking(shipment.receiver_name, k.order.receiver_name):
            out.append(k)
    return out


def _tier3_address(pool: Sequence[_OrderKeys], ship_address: str, ship_base: str) -> List[_OrderKeys]:
    return [
        k for k in pool
        if (k.address and k.address == ship_address)
        or _overlaps(k.address_base, ship_base)
        or _overlaps(k.address, ship_address)
    ]


def _tier4_enhanced_name(pool: Sequence[_OrderKeys], shipment: ShipmentRow) -> List[_OrderKeys]:
    ship_enhanced = normalize_name_enhanced(shipment.receiver_name)
    ship_company = normalize_company_name(shipment.receiver_name)
    return [
        k for k in pool
        if (ship_enhanced and k.name_enhanced == ship_enhanced)
        or (ship_company and k.company == ship_company)
        or are_names_similar_with_masking(shipment.receiver_name, k.order.receiver_name)
    ]


def match_shipments(orders: Sequence[OrderRecord], shipments: Sequence[ShipmentRow]) -> MatchResult:
    """
    Match every shipment row against ``orders``. Never raises for a row that
    cannot be matched; it is reported in ``result.failures``.
    """
    result = MatchResult()
    consumed: set = set()
    keyed = [_keys_for(o) for o in orders]
    customer_index = build_customer_index(orders)

    log.info(f"Matching {len(shipments)} shipment row(s) against {len(orders)} order(s)")

    for shipment in shipments:
        pool = [k for k in keyed if k.order.order_id not in consumed]
        ambiguous = False

        ship_name = normalize_name(shipment.receiver_name)
        ship_address = normalize_address(shipment.receiver_address)
        ship_phone = normalize_phone(shipment.receiver_phone)

        hit = None  # (keys, match_type, method)

        # Tier 1: name
        candidates = _tier1_name(pool, shipment, ship_name)
        if len(candidates) == 1:
            hit = (candidates[0], EXACT, METHOD_NAME)
        elif len(candidates) > 1:
            narrowed = [k for k in candidates if _overlaps(k.address, ship_address)]
            if len(narrowed) == 1:
                hit = (narrowed[0], EXACT, METHOD_NAME_ADDRESS)
            else:
                ambiguous = True
                log.debug(
                    f"Row {shipment.source_row}: {len(candidates)} name candidates, "
                    f"{len(narrowed)} after address narrowing"
                )

        # Tier 2: phone
        if hit is None and ship_phone:
            candidates = [k for k in pool if k.phone == ship_phone]
            if len(candidates) == 1:
                hit = (candidates[0], PARTIAL, METHOD_PHONE)
            elif len(candidates) > 1:
                ambiguous = True

        # Tier 3: address
        if hit is None and len(ship_address) >= MIN_ADDRESS_LENGTH:
            candidates = _tier3_address(pool, ship_address, extract_base_address(ship_address))
            if len(candidates) == 1:
                hit = (candidates[0], PARTIAL, METHOD_ADDRESS)
            elif len(candidates) > 1:
                ambiguous = True

        # Tier 4: relaxed name
        if hit is None:
            candidates = _tier4_enhanced_name(pool, shipment)
            if len(candidates) == 1:
                hit = (candidates[0], PARTIAL, METHOD_ENHANCED_NAME)
            elif len(candidates) > 1:
                ship_base = extract_base_address(shipment.receiver_address)
                narrowed = [k for k in candidates if _overlaps(k.raw_address_base, ship_base)]
                if len(narrowed) == 1:
                    hit = (narrowed[0], PARTIAL, METHOD_ENHANCED_NAME_ADDRESS)
                else:
                    ambiguous = True

        if hit is not None:
            keys, match_type, method = hit
            order = keys.order
            consumed.add(order.order_id)
            result.matched.append(MatchAssignment(
                order_id=order.order_id,
                receiver_name=order.receiver_name,
                receiver_address=order.receiver_address,
                tracking_no=shipment.tracking_no,
                match_type=match_type,
                method=method,
                source_row=shipment.source_row,
            ))
            result.log.append(MatchLogEntry(
                row=shipment.source_row,
                tracking_no=shipment.tracking_no,
                shipment_name=shipment.receiver_name,
                method=method,
                success=True,
                order_id=order.order_id,
                order_name=order.receiver_name,
            ))
            log.debug(f"Row {shipment.source_row}: {shipment.tracking_no} -> {order.order_id} ({method})")
            continue

        reason = REASON_AMBIGUOUS if ambiguous else REASON_NO_MATCH
        hints = possible_split_orders(customer_index, shipment.receiver_name, consumed)
        result.failures.append(MatchFailure(
            source_row=shipment.source_row,
            tracking_no=shipment.tracking_no,
            shipment_name=shipment.receiver_name,
            shipment_phone=shipment.receiver_phone,
            shipment_address=shipment.receiver_address,
            reason=reason,
            possible_split_order_ids=hints,
        ))
        result.log.append(MatchLogEntry(
            row=shipment.source_row,
            tracking_no=shipment.tracking_no,
            shipment_name=shipment.receiver_name,
            method="unmatched",
            success=False,
        ))
        log.info(
            f"Row {shipment.source_row}: no match for {shipment.receiver_name!r} "
            f"({reason}; split hints={hints})"
        )

    stats = result.statistics
    log.info(
        f"Matching done | total={stats['total_shipments']} exact={stats['exact_matches']} "
        f"partial={stats['partial_matches']} failed={stats['failed_matches']}"
    )
    return result
