"""
Booking lifecycle: Confirmed -> On Rent -> Completed, with Cancelled
reachable from any non-terminal state.

Bookings are re-priced from the current equipment daily rates when they are
created, even when they come from a quotation whose rates were frozen
earlier. Equipment status is left untouched by every transition.

``override_status`` writes any defined status directly and skips the
transition guards. It exists for operators correcting records by hand.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, from_mongo, get_documents, identity_query, object_id
from errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from identifiers import next_identifier
from pricing import parse_deposit, price_items, to_money
from quotations import get_quotation, resolve_equipment, validate_items
from schemas import Booking, BookingItem

logger = logging.getLogger(__name__)

COLLECTION = "booking"

STATUSES = ("Confirmed", "On Rent", "Completed", "Cancelled")
ACTIVE = {"Confirmed", "On Rent"}
TERMINAL = {"Completed", "Cancelled"}

# target status -> statuses it may be entered from
TRANSITIONS = {
    "On Rent": {"Confirmed"},
    "Completed": {"On Rent"},
    "Cancelled": ACTIVE,
}


def create_booking(
    db: Database,
    customer_name: Optional[str] = None,
    items: Optional[Iterable[Mapping[str, Any]]] = None,
    quotation_ref: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    security_deposit: Any = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Create a booking, optionally from an Accepted quotation.

    Values taken from the quotation (customer, dates, items) are only used
    where the caller did not pass their own.
    """
    source_code = None
    if quotation_ref:
        quotation = get_quotation(db, quotation_ref)
        if quotation["status"] != "Accepted":
            raise ValidationError(
                f"Quotation {quotation['quotation_id']} is {quotation['status']}, not Accepted"
            )
        source_code = quotation["quotation_id"]
        customer_name = customer_name or quotation["customer_name"]
        start_date = start_date or quotation.get("start_date")
        end_date = end_date or quotation.get("end_date")
        if not items:
            items = [
                {"equipment_id": item["equipment_id"], "name": item["name"], "quantity": item["quantity"]}
                for item in quotation["items"]
            ]

    if not customer_name or not customer_name.strip():
        raise ValidationError("Customer is required")
    items = validate_items(items)
    deposit = parse_deposit(security_deposit)
    start_date, end_date = _as_date(start_date), _as_date(end_date)
    if start_date and end_date and end_date < start_date:
        raise ValidationError("End date is before start date")

    equipment = [resolve_equipment(db, item["equipment_id"]) for item in items]
    _, total = price_items(
        (to_money(eq["daily_rate"]), item["quantity"]) for item, eq in zip(items, equipment)
    )

    now = now or datetime.now(timezone.utc)
    booking = Booking(
        booking_id=next_identifier(db, "booking", now.year),
        quotation_id=source_code,
        customer_name=customer_name.strip(),
        start_date=start_date,
        end_date=end_date,
        items=[
            BookingItem(
                equipment_id=eq["id"],
                name=item.get("name") or eq["name"],
                quantity=item["quantity"],
            )
            for item, eq in zip(items, equipment)
        ],
        total_amount=total,
        security_deposit=deposit,
        status="Confirmed",
        created_at=now,
    )
    try:
        doc = create_document(db, COLLECTION, booking.model_dump())
    except DuplicateKeyError:
        raise ConflictError(f"Booking {booking.booking_id} already exists")

    _record_customer_booking(db, doc["customer_name"], now)
    logger.info(
        "Created booking %s for %s (total %s, deposit %s%s)",
        doc["booking_id"], doc["customer_name"], total, deposit,
        f", from {source_code}" if source_code else "",
    )
    return doc


def _as_date(value: Any) -> Optional[date]:
    # dates come back from the database as ISO strings
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid date: {value}")
    return value or None


def list_bookings(db: Database, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"status": status} if status else {}
    return get_documents(db, COLLECTION, query)


def get_booking(db: Database, ref: str) -> Dict[str, Any]:
    doc = db[COLLECTION].find_one(identity_query(ref, "booking_id"))
    if not doc:
        raise NotFoundError("Booking not found")
    return from_mongo(doc)


def _write_status(db: Database, current: Dict[str, Any], target: str) -> Dict[str, Any]:
    updated = db[COLLECTION].find_one_and_update(
        {"_id": object_id(current["id"]), "status": current["status"]},
        {"$set": {"status": target, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise InvalidTransitionError(f"Booking {current['booking_id']} changed concurrently")
    _sync_active_count(db, current["customer_name"], current["status"], target)
    logger.info("Booking %s: %s -> %s", current["booking_id"], current["status"], target)
    return from_mongo(updated)


def _transition(db: Database, ref: str, target: str) -> Dict[str, Any]:
    current = get_booking(db, ref)
    if current["status"] not in TRANSITIONS[target]:
        raise InvalidTransitionError(
            f"Cannot move booking {current['booking_id']} from {current['status']} to {target}"
        )
    return _write_status(db, current, target)


def start_rental(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "On Rent")


def complete_return(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "Completed")


def cancel_booking(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "Cancelled")


def override_status(db: Database, ref: str, status: str) -> Dict[str, Any]:
    if status not in STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    current = get_booking(db, ref)
    if current["status"] == status:
        return current
    logger.warning("Status override on booking %s: %s -> %s", current["booking_id"], current["status"], status)
    return _write_status(db, current, status)


# ----------------------------
# Customer counters
# ----------------------------
def _record_customer_booking(db: Database, customer_name: str, when: datetime) -> None:
    db["customer"].update_one(
        {"name": customer_name},
        {"$inc": {"total_bookings": 1, "active_bookings": 1}, "$set": {"last_booking": when}},
    )


def _sync_active_count(db: Database, customer_name: str, old: str, new: str) -> None:
    if old in ACTIVE and new in TERMINAL:
        db["customer"].update_one(
            {"name": customer_name, "active_bookings": {"$gt": 0}},
            {"$inc": {"active_bookings": -1}},
        )
    elif old in TERMINAL and new in ACTIVE:
        db["customer"].update_one({"name": customer_name}, {"$inc": {"active_bookings": 1}})
