"""
Sequential human-readable identifiers: QT-2025-001, BK-2025-014, ...

``sequential_identifier`` is the plain count-based format. It is only safe
when callers are serialized: two requests that read the same count mint the
same code. ``next_identifier`` reserves the sequence number with a single
atomic increment on a per-(kind, year) counter document instead.
"""

import logging
import re

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from errors import ValidationError

logger = logging.getLogger(__name__)

PREFIXES = {
    "quotation": "QT",
    "booking": "BK",
}

# document field holding the code, per kind
CODE_FIELDS = {
    "quotation": "quotation_id",
    "booking": "booking_id",
}

COUNTER_COLLECTION = "counter"


def _prefix(kind: str) -> str:
    try:
        return PREFIXES[kind]
    except KeyError:
        raise ValidationError(f"Unknown identifier kind: {kind}")


def format_identifier(kind: str, seq: int, year: int) -> str:
    # widens past 999 rather than wrapping
    return f"{_prefix(kind)}-{year}-{seq:03d}"


def sequential_identifier(kind: str, count: int, year: int) -> str:
    return format_identifier(kind, count + 1, year)


def _highest_existing_seq(db: Database, kind: str, year: int) -> int:
    prefix = f"{_prefix(kind)}-{year}-"
    field = CODE_FIELDS[kind]
    pattern = re.compile("^" + re.escape(prefix) + r"(\d+)$")
    highest = 0
    for doc in db[kind].find({field: {"$regex": "^" + re.escape(prefix)}}, {field: 1}):
        match = pattern.match(doc.get(field, ""))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _seed_counter(db: Database, key: str, kind: str, year: int) -> None:
    if db[COUNTER_COLLECTION].find_one({"_id": key}) is not None:
        return
    seed = _highest_existing_seq(db, kind, year)
    try:
        db[COUNTER_COLLECTION].update_one(
            {"_id": key},
            {"$setOnInsert": {"kind": kind, "year": year, "seq": seed}},
            upsert=True,
        )
    except DuplicateKeyError:
        # another request created it first
        pass
    else:
        logger.info("Seeded %s counter for %s at %d", kind, year, seed)


def next_identifier(db: Database, kind: str, year: int) -> str:
    """Reserve and return the next code for ``kind`` in ``year``."""
    key = f"{kind}-{year}"
    _seed_counter(db, key, kind, year)
    counter = db[COUNTER_COLLECTION].find_one_and_update(
        {"_id": key},
        {"$inc": {"seq": 1}},
        return_document=ReturnDocument.AFTER,
    )
    return format_identifier(kind, counter["seq"], year)

