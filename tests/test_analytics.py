# tests/test_analytics.py
from datetime import datetime

import pytest
from pydantic import ValidationError

from medrental import crud
from medrental.config import Settings
from medrental.models import ReturnStatus, TransactionStatus
from medrental.services import analytics_service
from medrental.services.analytics_service import (
    average_rental_duration, active_rentals_with_progress, build_analytics_summary, count_active_rentals,
    diagnostics_by_technician, diagnostics_by_type, iah_severity, monthly_revenue, patient_growth,
    patients_by_age, patients_by_condition, rentals_by_patient, rentals_by_status, user_activity,
    yearly_revenue,
)

from factories import NOW, diagnostic, patient, rental, rental_item, sale, technician

KARIM = patient(id=2, full_name="Karim Trabelsi", phone="98765432")


def test_monthly_revenue_buckets_sales_and_rentals():
    buckets = monthly_revenue([sale(amount=100.0)], [rental(amount=50.0)], NOW)

    assert [b.month for b in buckets] == ["2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06"]
    june = buckets[-1]
    assert (june.sales, june.rentals, june.total) == (100.0, 50.0, 150.0)
    assert june.label == "Jun"
    assert all(b.total == 0 for b in buckets[:-1])


def test_monthly_revenue_crosses_year_boundary_and_ignores_old_records():
    now = datetime(2024, 2, 10)
    buckets = monthly_revenue([sale(date=datetime(2023, 1, 5))], [rental(start_date=datetime(2023, 12, 1))], now)
    assert buckets[0].month == "2023-09"
    assert buckets[-1].month == "2024-02"
    assert sum(b.sales for b in buckets) == 0
    assert next(b for b in buckets if b.month == "2023-12").rentals == 300.0


def test_yearly_revenue():
    result = yearly_revenue(
        [sale(date=datetime(2023, 3, 1), amount=500.0), sale(date=datetime(2024, 1, 1), amount=100.0)],
        [rental(start_date=datetime(2024, 2, 1), amount=40.0)],
    )
    assert [(y.year, y.total) for y in result] == [(2023, 500.0), (2024, 140.0)]


def test_average_duration_ignores_open_rentals():
    closed = rental(id=1, start_date=datetime(2024, 5, 1), end_date=datetime(2024, 5, 11))
    still_open = rental(id=2, end_date=None)

    rollups = rentals_by_patient([closed, still_open])

    assert len(rollups) == 1
    assert rollups[0].total_rentals == 2
    assert rollups[0].avg_duration == 10
    assert rollups[0].rental_ids == [1, 2]
    assert rollups[0].total_revenue == 600.0


def test_patient_with_only_open_rentals_has_no_average():
    assert rentals_by_patient([rental(end_date=None)])[0].avg_duration is None


def test_rentals_by_patient_ranks_by_count_keeping_ties_in_order():
    amel_only = [rental(id=1)]
    karim = [rental(id=i, patient_ref=KARIM) for i in (2, 3)]
    nour = [rental(id=4, patient_ref=patient(id=3, full_name="Nour Haddad"))]

    rollups = rentals_by_patient(amel_only + karim + nour)

    assert [r.patient.id for r in rollups] == [2, 1, 3]
    assert rentals_by_patient(amel_only + karim + nour, limit=1)[0].patient.id == 2


def test_active_rental_counts():
    rentals = [
        rental(id=1),
        rental(id=2, status=TransactionStatus.PENDING),
        rental(id=3, return_status=ReturnStatus.RETURNED),
        rental(id=4, status=TransactionStatus.CANCELLED),
        rental(id=5, return_status=ReturnStatus.PARTIALLY_RETURNED),
    ]
    assert count_active_rentals(rentals) == 2
    assert rentals_by_patient(rentals)[0].active_rentals == 2
    assert {s.status: s.count for s in rentals_by_status(rentals)} == {"COMPLETED": 3, "PENDING": 1, "CANCELLED": 1}


def test_fleet_average_rental_duration():
    assert average_rental_duration([]) == 0
    assert average_rental_duration([rental(end_date=None)]) == 0
    assert average_rental_duration([
        rental(start_date=datetime(2024, 5, 1), end_date=datetime(2024, 5, 11)),
        rental(start_date=datetime(2024, 5, 1), end_date=datetime(2024, 5, 6)),
    ]) == 8


def test_active_rentals_with_progress_summarises_equipment():
    items = [rental_item(id=i, name=name) for i, name in enumerate(["Concentrator", "CPAP", "Mask", "Tubing"], 1)]
    rentals = [
        rental(id=1, end_date=datetime(2024, 7, 1), items=items),
        rental(id=2, return_status=ReturnStatus.PARTIALLY_RETURNED, end_date=None),
        rental(id=3, return_status=ReturnStatus.RETURNED),
    ]

    entries = active_rentals_with_progress(rentals, NOW)

    assert [e.id for e in entries] == [1, 2]
    assert entries[0].equipment_count == 4
    assert entries[0].equipment_summary == "Concentrator, CPAP, Mask..."
    assert entries[0].progress_percentage == 50
    assert entries[1].equipment_summary == ""
    assert entries[1].days_remaining is None


def test_patients_by_age():
    patients = [
        patient(id=1, date_of_birth=datetime(2010, 1, 1)),
        patient(id=2, date_of_birth=datetime(1984, 6, 15)),
        patient(id=3, date_of_birth=datetime(1964, 6, 16)),
        patient(id=4, date_of_birth=datetime(1940, 1, 1)),
        patient(id=5),
    ]
    counts = {b.age: b.count for b in patients_by_age(patients, NOW)}
    assert counts == {"0-20": 1, "21-40": 1, "41-60": 1, "61-80": 0, "80+": 1}


@pytest.mark.parametrize("iah,expected", [
    (0, "negative"), (15, "negative"), (15.5, "moderate"), (29, "moderate"), (30, "severe"),
])
def test_iah_severity(iah, expected):
    assert iah_severity(iah) == expected


def test_patients_by_condition_uses_latest_diagnostic():
    diagnostics = [
        diagnostic(id=1, date=datetime(2024, 1, 1), iah_result=40.0),
        diagnostic(id=2, date=datetime(2024, 5, 1), iah_result=10.0),
        diagnostic(id=3, date=datetime(2024, 3, 1), iah_result=35.0, patient_ref=KARIM),
    ]
    counts = {b.condition: b.count for b in patients_by_condition(diagnostics)}
    assert counts == {"negative": 1, "severe": 1}


@pytest.mark.parametrize("field", ["iah_result", "id_result"])
def test_negative_sleep_index_is_rejected_when_the_record_is_built(field):
    with pytest.raises(ValidationError):
        diagnostic(**{field: -1.0})


def test_severity_buckets_with_a_zero_index():
    diagnostics = [diagnostic(id=i, iah_result=40.0, patient_ref=patient(id=i)) for i in (1, 2, 3)]
    diagnostics.append(diagnostic(id=4, iah_result=0.0, patient_ref=patient(id=4)))
    counts = {b.condition: b.count for b in patients_by_condition(diagnostics)}
    assert counts == {"severe": 3, "negative": 1}


def test_patient_growth_counts_new_patients_per_month():
    patients = [
        patient(id=1, created_at=datetime(2024, 6, 2)),
        patient(id=2, created_at=datetime(2024, 6, 10)),
        patient(id=3, created_at=datetime(2023, 7, 1)),
        patient(id=4, created_at=datetime(2023, 6, 30)),
    ]
    growth = patient_growth(patients, NOW)
    assert len(growth) == 12
    assert growth[0].month == "2023-07"
    assert growth[0].count == 1
    assert growth[-1].count == 2
    assert growth[-1].label == "Jun 2024"


def test_diagnostic_breakdowns():
    diagnostics = [
        diagnostic(id=1, polygraph="Nox T3", technician_id=1, technician_name="Admin"),
        diagnostic(id=2, polygraph="Nox T3", technician_id=2, technician_name="Sami Gharbi"),
        diagnostic(id=3, polygraph="ApneaLink", technician_id=2, technician_name="Sami Gharbi"),
        diagnostic(id=4, polygraph="ApneaLink"),
    ]
    assert {t.type: t.count for t in diagnostics_by_type(diagnostics)} == {"Nox T3": 2, "ApneaLink": 2}
    assert [(t.technician, t.count) for t in diagnostics_by_technician(diagnostics)] == [("Sami Gharbi", 2), ("Admin", 1)]


def test_user_activity_counts_recorded_actions():
    technicians = [technician(id=1, name="Admin"), technician(id=2, name="Sami Gharbi")]
    activity = user_activity(
        technicians,
        rentals=[rental(id=1, created_by=2), rental(id=2, created_by=1)],
        sales=[sale(created_by=2)],
        diagnostics=[diagnostic(technician_id=1)],
        patients_created={2: 3},
    )
    assert [(a.user, a.actions) for a in activity] == [("Admin", 2), ("Sami Gharbi", 5)]


def test_summary_from_database(seeded, db):
    summary = build_analytics_summary(db, NOW, Settings())

    assert summary.overview.total_patients == 2
    assert summary.overview.total_revenue == 1700.0
    assert summary.overview.active_rentals == 2
    assert summary.overview.overdue_payments == 1
    assert summary.overview.new_patients_this_month == 1
    assert summary.revenue.monthly[-1].total == 1700.0
    assert summary.rentals.average_rental_duration == 19
    assert [r.patient.full_name for r in summary.rentals.rentals_by_patient] == ["Karim Trabelsi", "Amel Ben Salah"]
    assert summary.patients.patients_by_condition[0].condition == "moderate"
    assert summary.diagnostics.diagnostics_by_technician[0].technician == "Admin"
    assert summary.users.total_users == 3
    assert [a.user for a in summary.users.user_activity] == ["Admin", "Manager", "Sami Gharbi"]
    sami = next(a for a in summary.users.user_activity if a.user == "Sami Gharbi")
    assert sami.actions == 4


def test_failing_statistic_degrades_to_empty(seeded, db, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise ZeroDivisionError("boom")

    monkeypatch.setattr(analytics_service, "monthly_revenue", broken)
    summary = build_analytics_summary(db, NOW, Settings())

    assert summary.revenue.monthly == []
    assert summary.revenue.yearly != []
    assert summary.overview.total_patients == 2
    assert "monthlyRevenue" in caplog.text


def test_base_fetch_failure_is_not_isolated(db, monkeypatch):
    def broken(db, patient_id=None):
        raise crud.CRUDError("Database error: connection lost")

    monkeypatch.setattr(crud, "get_rentals", broken)
    with pytest.raises(crud.CRUDError):
        build_analytics_summary(db, NOW, Settings())
