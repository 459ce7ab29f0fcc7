import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from errors import ValidationError
from identifiers import format_identifier, next_identifier, sequential_identifier
from quotations import create_quotation


def test_format_pads_to_three_digits():
    assert format_identifier("quotation", 6, 2025) == "QT-2025-006"
    assert format_identifier("booking", 42, 2025) == "BK-2025-042"


def test_format_widens_past_999():
    assert format_identifier("quotation", 999, 2025) == "QT-2025-999"
    assert format_identifier("quotation", 1000, 2025) == "QT-2025-1000"


def test_unknown_kind_rejected():
    with pytest.raises(ValidationError):
        format_identifier("invoice", 1, 2025)


def test_count_based_ids_collide_when_count_is_shared():
    # two requests that both read count=5
    first = sequential_identifier("quotation", 5, 2025)
    second = sequential_identifier("quotation", 5, 2025)
    assert first == second == "QT-2025-006"


def test_counter_hands_out_distinct_ids_after_existing_documents(db):
    db["quotation"].insert_many(
        [{"quotation_id": f"QT-2025-{n:03d}", "status": "Draft"} for n in range(1, 6)]
    )
    assert next_identifier(db, "quotation", 2025) == "QT-2025-006"
    assert next_identifier(db, "quotation", 2025) == "QT-2025-007"


def test_counter_seeds_from_highest_suffix_not_count(db):
    # legacy all-time numbering leaves gaps
    db["booking"].insert_many([
        {"booking_id": "BK-2025-004"},
        {"booking_id": "BK-2025-009"},
        {"booking_id": "BK-2024-120"},
    ])
    assert next_identifier(db, "booking", 2025) == "BK-2025-010"


def test_counter_is_scoped_by_year_and_kind(db):
    assert next_identifier(db, "quotation", 2025) == "QT-2025-001"
    assert next_identifier(db, "quotation", 2025) == "QT-2025-002"
    assert next_identifier(db, "quotation", 2026) == "QT-2026-001"
    assert next_identifier(db, "booking", 2025) == "BK-2025-001"


def test_serial_quotation_creations_are_strictly_increasing(db, excavator):
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)
    ids = [
        create_quotation(db, "Acme Builders", [{"equipment_id": excavator["id"], "quantity": 1}], now=now)["quotation_id"]
        for _ in range(12)
    ]
    assert all(re.fullmatch(r"QT-2025-\d{3}", i) for i in ids)
    suffixes = [int(i.rsplit("-", 1)[1]) for i in ids]
    assert suffixes == sorted(set(suffixes))
    assert suffixes[0] == 1 and suffixes[-1] == 12


def test_concurrent_counter_calls_never_repeat(db):
    db["quotation"].insert_many(
        [{"quotation_id": f"QT-2025-{n:03d}", "status": "Draft"} for n in range(1, 6)]
    )
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: next_identifier(db, "quotation", 2025), range(16)))
    assert len(set(ids)) == 16
    assert {int(i.rsplit("-", 1)[1]) for i in ids} == set(range(6, 22))


def test_concurrent_quotation_creations_get_distinct_ids(db, excavator):
    db["quotation"].insert_many(
        [{"quotation_id": f"QT-2025-{n:03d}", "status": "Draft"} for n in range(1, 6)]
    )
    now = datetime(2025, 6, 1, tzinfo=timezone.utc)

    def create(_):
        return create_quotation(
            db, "Acme Builders", [{"equipment_id": excavator["id"], "quantity": 1}], now=now
        )["quotation_id"]

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(create, range(8)))
    assert len(set(ids)) == 8
    assert {int(i.rsplit("-", 1)[1]) for i in ids} == set(range(6, 14))
    assert db["quotation"].count_documents({}) == 13
