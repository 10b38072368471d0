from datetime import datetime, timedelta, timezone
from decimal import Decimal

from conftest import FIXED_NOW, make_record
from fleetdesk.core.settings import settings
from fleetdesk.schemas.insured_objects import CalculationMethod, ObjectType, WorkflowStatus
from fleetdesk.schemas.pending import PendingQuery, SortDirection, SortField
from fleetdesk.services import pending_objects


def _objects(*records):
    return pending_objects.normalize_records(records, FIXED_NOW)


def test_normalize_reads_aliases():
    obj = pending_objects.normalize_raw_record(make_record(notitie="Let op"), 0, FIXED_NOW)

    assert obj.id == "obj-1"
    assert obj.object_type == ObjectType.BOAT
    assert obj.value == Decimal("20000")
    assert obj.premium_method == CalculationMethod.PERCENTAGE
    assert obj.premium_percentage == Decimal("2.5")
    assert obj.own_risk_amount == Decimal("250")
    assert obj.notes == "Let op"
    assert obj.insurance_start_date == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert obj.attributes["merkBoot"] == "Beneteau"
    assert "waarde" not in obj.attributes


def test_normalize_backfills_missing_values():
    obj = pending_objects.normalize_raw_record({"motorMerk": "Yamaha"}, 4, FIXED_NOW)

    assert obj.id == "temp-id-4"
    assert obj.organization == settings.unknown_organization_label
    assert obj.object_type == ObjectType.MOTOR
    assert obj.status == WorkflowStatus.PENDING
    assert obj.value == Decimal("0")
    assert obj.premium_percentage == Decimal("0")
    assert obj.own_risk_amount == Decimal("0")
    assert obj.created_at == FIXED_NOW
    assert obj.insurance_start_date == FIXED_NOW


def test_normalize_defaults_to_boat_and_keeps_rejected_status():
    obj = pending_objects.normalize_raw_record({"id": "x", "status": "rejected"}, 0, FIXED_NOW)
    assert obj.object_type == ObjectType.BOAT
    assert obj.status == WorkflowStatus.REJECTED


def test_normalize_skips_non_mapping_records():
    objects = pending_objects.normalize_records([make_record(), "garbage", None], FIXED_NOW)
    assert [obj.id for obj in objects] == ["obj-1"]


def test_normalize_parses_rejection_audit():
    record = make_record(
        rejectionAudit={
            "reason": "Value above limit",
            "ingangsdatumOverride": True,
            "rulesEvaluated": [
                {
                    "ruleName": "Max value",
                    "logic": "AND",
                    "passedConditions": 1,
                    "totalConditions": 2,
                    "failedConditions": [
                        {"field": "waarde", "operator": "<=", "expected": 15000, "actual": 20000}
                    ],
                }
            ],
        }
    )
    audit = pending_objects.normalize_raw_record(record, 0, FIXED_NOW).rejection_audit

    assert audit.reason == "Value above limit"
    assert audit.ingangsdatum_override is True
    assert audit.rules_evaluated[0].rule_name == "Max value"
    assert audit.rules_evaluated[0].failed_conditions[0].actual == 20000


def test_display_names_per_type():
    boat, trailer, motor, nameless = _objects(
        make_record("b"),
        make_record("t", objectType="trailer", trailerRegistratienummer="WX-12-YZ"),
        make_record("m", objectType="motor", motorMerk="Yamaha", motorSerienummer="S-9"),
        {"id": "n", "objectType": "boat", "bootnummer": "NL-9"},
    )
    assert pending_objects.display_name(boat) == "Beneteau (NL-123)"
    assert pending_objects.display_name(trailer) == "Trailer (WX-12-YZ)"
    assert pending_objects.display_name(motor) == "Yamaha (S-9)"
    assert pending_objects.display_name(nameless) == "Boot NL-9"


def test_stats():
    objects = _objects(
        make_record("a", createdAt="2026-02-01T00:00:00Z"),
        make_record("b", objectType="trailer", organization="Org B", waarde=500),
        make_record("c", objectType="motor", waarde=1500),
    )
    stats = pending_objects.calculate_stats(objects, FIXED_NOW)

    assert stats.total == 3
    assert (stats.boats, stats.trailers, stats.motors) == (1, 1, 1)
    assert stats.organization_count == 2
    assert stats.total_value == Decimal("22000")
    assert stats.oldest_pending == datetime(2026, 2, 1, tzinfo=timezone.utc)
    # 28 days and 12 hours
    assert stats.oldest_pending_days == 29


def test_stats_of_empty_queue():
    stats = pending_objects.calculate_stats([], FIXED_NOW)
    assert stats.total == 0
    assert stats.oldest_pending is None


def test_item_created_hours_ago_is_one_day_old():
    objects = _objects(make_record("a", createdAt=(FIXED_NOW - timedelta(hours=2)).isoformat()))
    assert pending_objects.calculate_stats(objects, FIXED_NOW).oldest_pending_days == 1


def test_days_ago_counts_started_days_in_either_direction():
    assert pending_objects.days_ago(FIXED_NOW, FIXED_NOW) == 0
    assert pending_objects.days_ago(FIXED_NOW - timedelta(days=3), FIXED_NOW) == 3
    assert pending_objects.days_ago(FIXED_NOW - timedelta(days=3, minutes=1), FIXED_NOW) == 4
    assert pending_objects.days_ago(FIXED_NOW + timedelta(hours=5), FIXED_NOW) == 1


def test_rejected_objects_are_counted_but_left_out_of_total_value():
    objects = _objects(
        make_record("a", waarde=20000),
        make_record("b", waarde=5000, status="Rejected"),
        make_record("c", waarde=1000),
    )
    stats = pending_objects.calculate_stats(objects, FIXED_NOW)

    assert stats.total == 3
    assert stats.total_value == Decimal("21000")
    assert (stats.pending_count, stats.pending_value) == (2, Decimal("21000"))
    assert (stats.rejected_count, stats.rejected_value) == (1, Decimal("5000"))
    assert not pending_objects.counts_toward_value(WorkflowStatus.REJECTED)
    assert pending_objects.counts_toward_value("Pending")


def test_bad_field_values_are_backfilled_instead_of_failing():
    obj = pending_objects.normalize_raw_record(
        make_record("a", notitie=12345, lastUpdatedBy=7, waarde="NaN", premiepromillage="Infinity", eigenRisico="-inf"),
        0,
        FIXED_NOW,
    )

    assert obj.notes == "12345"
    assert obj.last_updated_by == "7"
    assert obj.value == Decimal("0")
    assert obj.premium_percentage == Decimal("0")
    assert obj.own_risk_amount == Decimal("0")


def test_one_bad_record_does_not_hide_the_rest_of_the_queue():
    objects = _objects(
        make_record("good-1"),
        make_record("bad", notitie=7, waarde="NaN", createdAt={"not": "a date"}),
        make_record("good-2"),
    )
    assert [obj.id for obj in objects] == ["good-1", "bad", "good-2"]
    assert objects[1].notes == "7"
    assert objects[1].created_at == FIXED_NOW


def test_search_is_case_insensitive_across_fields():
    objects = _objects(
        make_record("a", notitie="Spoed graag"),
        make_record("b", organization="Jachthaven Noord"),
        make_record("c", objectType="trailer"),
    )
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(search="SPOED"))] == ["a"]
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(search="noord"))] == ["b"]
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(search="trailer"))] == ["c"]
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(search="beneteau"))] == ["a", "b"]


def test_type_and_organization_filters():
    objects = _objects(
        make_record("a"),
        make_record("b", objectType="motor", organization="Org B"),
    )
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(object_type=ObjectType.MOTOR))] == ["b"]
    assert [o.id for o in pending_objects.filter_objects(objects, PendingQuery(organization="Org A"))] == ["a"]


def test_sort_is_stable_in_both_directions():
    base = FIXED_NOW - timedelta(days=3)
    objects = _objects(
        make_record("first", waarde=100, createdAt=base.isoformat()),
        make_record("second", waarde=100, createdAt=(base + timedelta(days=1)).isoformat()),
        make_record("third", waarde=50, createdAt=(base + timedelta(days=2)).isoformat()),
    )

    ascending = pending_objects.sort_objects(objects, SortField.VALUE, SortDirection.ASC)
    descending = pending_objects.sort_objects(objects, SortField.VALUE, SortDirection.DESC)

    assert [o.id for o in ascending] == ["third", "first", "second"]
    assert [o.id for o in descending] == ["first", "second", "third"]


def test_default_sort_is_newest_first():
    objects = _objects(
        make_record("old", createdAt="2026-01-01T00:00:00Z"),
        make_record("new", createdAt="2026-02-01T00:00:00Z"),
    )
    assert [o.id for o in pending_objects.apply_query(objects, PendingQuery())] == ["new", "old"]


def test_record_that_cannot_be_read_is_skipped():
    unreadable = {**make_record("bad"), 42: "numeric key"}
    objects = _objects(make_record("good-1"), unreadable, make_record("good-2"))
    assert [obj.id for obj in objects] == ["good-1", "good-2"]
