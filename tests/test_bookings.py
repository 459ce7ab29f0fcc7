from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from bson.decimal128 import Decimal128

from bookings import (
    cancel_booking,
    complete_return,
    create_booking,
    get_booking,
    override_status,
    start_rental,
)
from database import create_document
from errors import InvalidTransitionError, ValidationError
from quotations import accept_quotation, create_quotation, send_quotation

NOW = datetime(2025, 4, 2, tzinfo=timezone.utc)


def _book(db, *items, customer="Acme Builders", **kwargs):
    return create_booking(
        db,
        customer_name=customer,
        items=[{"equipment_id": eq["id"], "quantity": qty} for eq, qty in items],
        now=NOW,
        **kwargs,
    )


def test_standalone_booking(db, excavator, mixer):
    b = _book(db, (excavator, 1), (mixer, 2), security_deposit="20000")

    assert b["booking_id"] == "BK-2025-001"
    assert b["status"] == "Confirmed"
    assert b["quotation_id"] is None
    assert b["total_amount"] == Decimal("20001.00")
    assert b["security_deposit"] == Decimal("20000.00")
    assert [(i["name"], i["quantity"]) for i in b["items"]] == [("Mini Excavator", 1), ("Concrete Mixer", 2)]


@pytest.mark.parametrize("raw", [None, "", "not a number"])
def test_deposit_defaults_to_zero(db, excavator, raw):
    assert _book(db, (excavator, 1), security_deposit=raw)["security_deposit"] == Decimal("0.00")


def test_negative_deposit_rejected(db, excavator):
    with pytest.raises(ValidationError):
        _book(db, (excavator, 1), security_deposit=-1)
    assert db["booking"].count_documents({}) == 0


def test_requires_items_and_customer(db, excavator):
    with pytest.raises(ValidationError):
        create_booking(db, customer_name="Acme Builders", items=[], now=NOW)
    with pytest.raises(ValidationError):
        create_booking(db, customer_name=None, items=[{"equipment_id": excavator["id"], "quantity": 1}], now=NOW)
    assert db["booking"].count_documents({}) == 0


def _accepted_quote(db, excavator, mixer):
    q = create_quotation(
        db,
        "Lanka Constructions",
        [{"equipment_id": excavator["id"], "quantity": 2}, {"equipment_id": mixer["id"], "quantity": 1}],
        start_date=date(2025, 4, 5),
        end_date=date(2025, 4, 9),
        now=NOW,
    )
    send_quotation(db, q["id"])
    return accept_quotation(db, q["id"])


def test_booking_from_accepted_quotation_round_trip(db, excavator, mixer):
    q = _accepted_quote(db, excavator, mixer)

    b = create_booking(db, quotation_ref=q["quotation_id"], security_deposit=5000, now=NOW)

    assert b["quotation_id"] == q["quotation_id"]
    assert b["customer_name"] == q["customer_name"]
    assert (b["start_date"], b["end_date"]) == (q["start_date"], q["end_date"]) == ("2025-04-05", "2025-04-09")
    assert [(i["name"], i["quantity"]) for i in b["items"]] == [(i["name"], i["quantity"]) for i in q["items"]]


def test_booking_reprices_at_current_rate(db, excavator, mixer):
    q = _accepted_quote(db, excavator, mixer)
    db["equipment"].update_one({"name": "Mini Excavator"}, {"$set": {"daily_rate": Decimal128("16000.00")}})

    b = create_booking(db, quotation_ref=q["id"], now=NOW)

    assert q["total_amount"] == Decimal("32500.50")
    assert b["total_amount"] == Decimal("34500.50")


def test_quotation_must_be_accepted(db, excavator):
    q = create_quotation(db, "Acme Builders", [{"equipment_id": excavator["id"], "quantity": 1}], now=NOW)
    with pytest.raises(ValidationError):
        create_booking(db, quotation_ref=q["id"], now=NOW)
    assert db["booking"].count_documents({}) == 0


def test_full_lifecycle(db, excavator):
    b = _book(db, (excavator, 1))
    assert start_rental(db, b["id"])["status"] == "On Rent"
    assert complete_return(db, b["booking_id"])["status"] == "Completed"


def test_complete_requires_on_rent(db, excavator):
    b = _book(db, (excavator, 1))
    with pytest.raises(InvalidTransitionError):
        complete_return(db, b["id"])
    assert get_booking(db, b["id"])["status"] == "Confirmed"


def test_cancel_from_any_non_terminal_state(db, excavator):
    confirmed = _book(db, (excavator, 1))
    on_rent = _book(db, (excavator, 1))
    start_rental(db, on_rent["id"])

    assert cancel_booking(db, confirmed["id"])["status"] == "Cancelled"
    assert cancel_booking(db, on_rent["id"])["status"] == "Cancelled"


def test_terminal_states_cannot_be_cancelled_or_restarted(db, excavator):
    b = _book(db, (excavator, 1))
    start_rental(db, b["id"])
    complete_return(db, b["id"])
    with pytest.raises(InvalidTransitionError):
        cancel_booking(db, b["id"])
    with pytest.raises(InvalidTransitionError):
        start_rental(db, b["id"])


def test_override_skips_transition_guards(db, excavator):
    b = _book(db, (excavator, 1))
    assert b["booking_id"] == "BK-2025-001"

    updated = override_status(db, "BK-2025-001", "Completed")

    assert updated["status"] == "Completed"
    # and back out of a terminal state
    assert override_status(db, b["id"], "Confirmed")["status"] == "Confirmed"


def test_override_rejects_unknown_status(db, excavator):
    b = _book(db, (excavator, 1))
    with pytest.raises(ValidationError):
        override_status(db, b["id"], "Lost")


def test_equipment_status_left_alone(db, excavator):
    b = _book(db, (excavator, 1))
    start_rental(db, b["id"])
    assert db["equipment"].find_one({"name": "Mini Excavator"})["status"] == "Available"


def test_customer_counters_follow_bookings(db, excavator):
    create_document(db, "customer", {
        "name": "Acme Builders", "phone": "0771234567", "national_id": "901234567V",
        "address": "12 Galle Road", "total_bookings": 0, "active_bookings": 0,
    })
    first = _book(db, (excavator, 1))
    second = _book(db, (excavator, 1))

    customer = db["customer"].find_one({"name": "Acme Builders"})
    assert (customer["total_bookings"], customer["active_bookings"]) == (2, 2)
    assert customer["last_booking"] is not None

    start_rental(db, first["id"])
    complete_return(db, first["id"])
    cancel_booking(db, second["id"])
    customer = db["customer"].find_one({"name": "Acme Builders"})
    assert (customer["total_bookings"], customer["active_bookings"]) == (2, 0)

    override_status(db, second["id"], "Confirmed")
    assert db["customer"].find_one({"name": "Acme Builders"})["active_bookings"] == 1


def test_unknown_customer_name_is_not_an_error(db, excavator):
    b = _book(db, (excavator, 1), customer="Walk-in")
    assert b["customer_name"] == "Walk-in"
    assert db["customer"].count_documents({}) == 0
