"""
Quotation lifecycle: Draft -> Sent -> Accepted | Declined.

Items freeze the equipment daily rate at creation; totals are never
recomputed afterwards.
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
from pricing import price_items, to_money
from schemas import Quotation, QuotationItem

logger = logging.getLogger(__name__)

COLLECTION = "quotation"

# target status -> statuses it may be entered from
TRANSITIONS = {
    "Sent": {"Draft"},
    # Draft is accepted too: quotations are often agreed before being sent
    "Accepted": {"Draft", "Sent"},
    "Declined": {"Draft", "Sent"},
}


def resolve_equipment(db: Database, equipment_id: str) -> Dict[str, Any]:
    doc = db["equipment"].find_one({"_id": object_id(equipment_id, "Equipment")})
    if not doc:
        raise NotFoundError(f"Equipment {equipment_id} not found")
    return from_mongo(doc)


def validate_items(items: Optional[Iterable[Mapping[str, Any]]]) -> List[Mapping[str, Any]]:
    items = list(items or [])
    if not items:
        raise ValidationError("At least one item is required")
    for item in items:
        if not item.get("equipment_id"):
            raise ValidationError("Each item needs an equipment reference")
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be at least 1")
    return items


def create_quotation(
    db: Database,
    customer_name: str,
    items: Iterable[Mapping[str, Any]],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if not customer_name or not customer_name.strip():
        raise ValidationError("Customer is required")
    items = validate_items(items)
    if start_date and end_date and end_date < start_date:
        raise ValidationError("End date is before start date")

    equipment = [resolve_equipment(db, item["equipment_id"]) for item in items]
    rates = [to_money(eq["daily_rate"]) for eq in equipment]
    subtotals, total = price_items(zip(rates, (item["quantity"] for item in items)))

    now = now or datetime.now(timezone.utc)
    quotation = Quotation(
        quotation_id=next_identifier(db, "quotation", now.year),
        customer_name=customer_name.strip(),
        start_date=start_date,
        end_date=end_date,
        items=[
            QuotationItem(
                equipment_id=eq["id"],
                name=eq["name"],
                quantity=item["quantity"],
                rate=rate,
                subtotal=subtotal,
            )
            for item, eq, rate, subtotal in zip(items, equipment, rates, subtotals)
        ],
        total_amount=total,
        status="Draft",
        created_at=now,
    )
    try:
        doc = create_document(db, COLLECTION, quotation.model_dump())
    except DuplicateKeyError:
        raise ConflictError(f"Quotation {quotation.quotation_id} already exists")
    logger.info("Created quotation %s for %s (total %s)", doc["quotation_id"], doc["customer_name"], total)
    return doc


def list_quotations(db: Database, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"status": status} if status else {}
    return get_documents(db, COLLECTION, query)


def get_quotation(db: Database, ref: str) -> Dict[str, Any]:
    doc = db[COLLECTION].find_one(identity_query(ref, "quotation_id"))
    if not doc:
        raise NotFoundError("Quotation not found")
    return from_mongo(doc)


def _transition(db: Database, ref: str, target: str) -> Dict[str, Any]:
    current = get_quotation(db, ref)
    allowed = TRANSITIONS[target]
    if current["status"] not in allowed:
        raise InvalidTransitionError(
            f"Cannot move quotation {current['quotation_id']} from {current['status']} to {target}"
        )
    # filter on the old status so a concurrent transition cannot be overwritten
    updated = db[COLLECTION].find_one_and_update(
        {"_id": object_id(current["id"]), "status": current["status"]},
        {"$set": {"status": target, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise InvalidTransitionError(f"Quotation {current['quotation_id']} changed concurrently")
    logger.info("Quotation %s: %s -> %s", current["quotation_id"], current["status"], target)
    return from_mongo(updated)


def send_quotation(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "Sent")


def accept_quotation(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "Accepted")


def decline_quotation(db: Database, ref: str) -> Dict[str, Any]:
    return _transition(db, ref, "Declined")
