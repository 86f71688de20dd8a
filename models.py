#models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

@dataclass
class ApiDecodeResult:
    status_code: Optional[int]
    endpoint: str
    error_message: str
    details: Any = None
    payload: Optional[dict] = None
    raw_text: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

@dataclass
class Cafe24Token:
    access_token: str
    refresh_token: str
    expires_at: float           # epoch seconds
    token_type: str = "Bearer"

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

# ---------- Matching ----------
@dataclass(frozen=True)
class OrderRecord:
    order_id: str
    receiver_name: str = ""
    receiver_phone: str = ""
    receiver_address: str = ""
    order_status: str = ""
    order_status_text: str = ""
    order_date: str = ""

@dataclass(frozen=True)
class ShipmentRow:
    tracking_no: str
    receiver_name: str = ""
    receiver_phone: str = ""
    receiver_zipcode: str = ""
    receiver_address: str = ""
    source_row: int = 0

@dataclass
class MatchAssignment:
    order_id: str
    receiver_name: str
    receiver_address: str
    tracking_no: str
    match_type: str             # exact | partial
    method: str = ""
    source_row: int = 0
    shipping_company_code: Optional[str] = None
    status: Optional[str] = None

@dataclass
class MatchFailure:
    source_row: int
    tracking_no: str
    shipment_name: str
    shipment_phone: str
    shipment_address: str
    reason: str
    possible_split_order_ids: List[str] = field(default_factory=list)

@dataclass
class MatchLogEntry:
    row: int
    tracking_no: str
    shipment_name: str
    method: str
    success: bool
    order_id: Optional[str] = None
    order_name: Optional[str] = None

@dataclass
class MatchResult:
    matched: List[MatchAssignment] = field(default_factory=list)
    failures: List[MatchFailure] = field(default_factory=list)
    log: List[MatchLogEntry] = field(default_factory=list)

    @property
    def statistics(self) -> Dict[str, int]:
        return {
            "total_shipments": len(self.log),
            "exact_matches": sum(1 for m in self.matched if m.match_type == "exact"),
            "partial_matches": sum(1 for m in self.matched if m.match_type == "partial"),
            "failed_matches": len(self.failures),
        }

# ---------- Bulk dispatch ----------
@dataclass
class FailedShipment:
    order_id: str
    tracking_no: str
    error_message: str

@dataclass
class DispatchSummary:
    total: int = 0
    succeeded: int = 0
    failed: List[FailedShipment] = field(default_factory=list)

    def merge(self, other: "DispatchSummary") -> None:
        self.total += other.total
        self.succeeded += other.succeeded
        self.failed.extend(other.failed)

# ---------- Price update queue ----------
@dataclass(frozen=True)
class Product:
    product_no: int
    product_name: str
    base_price: int
    variant_5kg_code: str
    variant_20kg_code: str
    price_per_kg_1: int
    price_per_kg_5: int
    price_per_kg_20: int

class Operation(str, Enum):
    BASE_PRICE = "base_price"
    OPTIONS = "options"
    VARIANT_5KG = "variant_5kg"
    VARIANT_20KG = "variant_20kg"

class ItemState(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

@dataclass
class WorkItem:
    id: str
    operation: Operation
    product: Product
    entity_label: str
    step_label: str
    retry_count: int = 0
    state: ItemState = ItemState.PENDING

@dataclass(frozen=True)
class UpdateError:
    entity_label: str
    step_label: str
    error_message: str
    timestamp: datetime

@dataclass(frozen=True)
class UpdateProgress:
    total: int = 0
    completed: int = 0
    failed: int = 0
    current_entity: str = ""
    current_step: str = ""
    percentage: int = 0
    errors: tuple = ()
    estimated_remaining_minutes: int = 0
    running: bool = False
