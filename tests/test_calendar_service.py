# tests/test_calendar_service.py
import time
from datetime import datetime

import pytest
from pydantic import ValidationError

from medrental import crud, schemas
from medrental.models import AppointmentStatus
from medrental.services.calendar_service import (
    CalendarDataError, build_calendar_events, build_calendar_stats, load_calendar_sources,
)

from factories import NOW, appointment, diagnostic, patient, payment, rental, sale


@pytest.fixture
def sources():
    karim = patient(id=2, full_name="Karim Trabelsi", phone="98765432")
    return schemas.CalendarSources(
        appointments=[appointment(id=1, appointment_date=datetime(2024, 6, 5))],
        rentals=[
            rental(id=1, end_date=datetime(2024, 6, 20), payments=[
                payment(id=1, due_date=datetime(2024, 5, 20)),
                payment(id=2, period_end_date=datetime(2024, 6, 30)),
            ]),
            rental(id=2, start_date=datetime(2024, 6, 10), end_date=None, patient_ref=karim),
        ],
        sales=[sale(id=1, date=datetime(2024, 6, 5), patient_ref=karim,
                    payments=[payment(id=3, amount=1200.0, due_date=datetime(2024, 7, 5))])],
        diagnostics=[diagnostic(id=1)],
    )


def test_events_are_sorted_by_date(sources):
    events = build_calendar_events(sources, NOW)
    dates = [e.date for e in events]
    assert dates == sorted(dates)


def test_aggregation_is_repeatable(sources):
    first = build_calendar_events(sources, NOW)
    second = build_calendar_events(sources, NOW)
    assert [e.model_dump() for e in first] == [e.model_dump() for e in second]


def test_same_date_events_keep_encounter_order(sources):
    events = build_calendar_events(sources, NOW)
    same_day = [e.id for e in events if e.date == datetime(2024, 6, 5)]
    assert same_day.index("appointment-1") < same_day.index("sale-1")


def test_payment_events_only_for_payments_with_due_date(sources):
    events = build_calendar_events(sources, NOW)
    payment_ids = [e.id for e in events if e.type == schemas.EventType.payment]
    assert sorted(payment_ids) == ["payment-1", "sale-payment-3"]


def test_payment_event_status_is_recomputed(sources):
    events = {e.id: e for e in build_calendar_events(sources, NOW)}
    overdue = events["payment-1"]
    assert overdue.status == "OVERDUE"
    assert overdue.details.is_overdue is True
    assert overdue.details.overdue_days == 19
    upcoming = events["sale-payment-3"]
    assert upcoming.status == "DUE"
    assert upcoming.details.sale_amount == 1200.0


def test_open_rental_has_no_end_event(sources):
    ids = {e.id for e in build_calendar_events(sources, NOW)}
    assert "rental-end-1" in ids
    assert "rental-start-2" in ids
    assert "rental-end-2" not in ids


def test_event_details_are_tagged(sources):
    events = build_calendar_events(sources, NOW)
    kinds = {e.type: e.details.kind for e in events}
    assert kinds[schemas.EventType.appointment] == "appointment"
    assert kinds[schemas.EventType.rental_period] == "rental_period"
    assert kinds[schemas.EventType.diagnostic] == "diagnostic"
    assert kinds[schemas.EventType.sale] == "sale"


def test_events_serialise_with_camel_case_keys(sources):
    event = build_calendar_events(sources, NOW)[0]
    data = event.model_dump(by_alias=True)
    assert "fullName" in data["patient"]
    assert "dayInPeriod" in data


def test_empty_sources_give_no_events():
    assert build_calendar_events(schemas.CalendarSources(), NOW) == []


def test_calendar_stats(sources):
    stats = build_calendar_stats(sources, NOW)
    assert stats.appointments == 1
    assert stats.rentals == 2
    assert stats.sales == 1
    assert stats.diagnostics == 1
    assert stats.overdue_payments == 1


@pytest.mark.asyncio
async def test_load_calendar_sources_reads_every_collection(seeded, session_factory):
    loaded = await load_calendar_sources(session_factory)

    assert len(loaded.appointments) == 1
    assert len(loaded.rentals) == 2
    assert len(loaded.sales) == 1
    assert len(loaded.diagnostics) == 1
    closed = next(r for r in loaded.rentals if r.id == seeded.closed_rental.id)
    # direct and item payments are merged
    assert {p.id for p in closed.payments} == {seeded.overdue_payment.id, seeded.item_payment.id}
    assert {i.name for i in closed.items} == {"ResMed AirSense 10", "Nasal mask"}
    assert loaded.appointments[0].linked_rental == "CTR-001"
    assert loaded.appointments[0].status == AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_load_calendar_sources_filters_by_patient(seeded, session_factory):
    loaded = await load_calendar_sources(session_factory, patient_id=seeded.karim.id)
    assert [r.id for r in loaded.rentals] == [seeded.open_rental.id]
    assert len(loaded.sales) == 1
    assert loaded.appointments == []
    assert loaded.diagnostics == []


@pytest.mark.asyncio
async def test_one_failing_fetch_fails_the_whole_load(seeded, session_factory, monkeypatch):
    def broken(db, patient_id=None):
        raise crud.CRUDError("Database error: connection lost")

    monkeypatch.setattr(crud, "get_sales", broken)
    with pytest.raises(CalendarDataError, match="Failed to load calendar data"):
        await load_calendar_sources(session_factory)


@pytest.mark.asyncio
async def test_slow_fetch_times_out(seeded, session_factory, monkeypatch):
    def slow(db, patient_id=None):
        time.sleep(0.5)
        return []

    monkeypatch.setattr(crud, "get_diagnostics", slow)
    with pytest.raises(CalendarDataError):
        await load_calendar_sources(session_factory, timeout=0.05)


def test_event_details_are_immutable(sources):
    event = next(e for e in build_calendar_events(sources, NOW) if e.type == schemas.EventType.sale)
    with pytest.raises(ValidationError):
        event.details.amount = 1.0
    assert event.details.amount == 1200.0
