import threading

import pytest

from app.core.errors import ValidationError
from app.services import reports, rules

from conftest import VIN_1, VIN_2

DAY_MS = 86_400_000
# 2025-01-05 07:34:05 UTC
T0 = 1_736_062_445_000


class _FakeClickHouse:
    """Returns canned rows per table and records every statement it gets."""

    def __init__(self, rows_by_table: dict[str, list[dict]] | None = None):
        self.rows_by_table = rows_by_table or {}
        self.queries: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def query(self, sql, params=None, *, allow_missing_table=True):
        with self._lock:
            self.queries.append((sql, params))
        for table, rows in self.rows_by_table.items():
            if f"FROM {table}\n" in sql:
                return [dict(row) for row in rows]
        return []


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (0, 30 * DAY_MS - 1, [0]),
        (30 * DAY_MS, 60 * DAY_MS, [1, 2]),
        (100, 50, []),
    ],
)
def test_time_buckets(start, end, expected) -> None:
    assert reports.clh_time_bucket_range(start, end) == expected


@pytest.mark.parametrize(
    "start, end",
    [
        (T0, T0),
        (T0 + 10, T0),
        (T0, T0 + 10 * DAY_MS),
        (-5, T0),
    ],
)
def test_invalid_windows(start, end) -> None:
    with pytest.raises(ValidationError) as exc:
        reports.validate_report_window(start, end, now_ms=T0 + DAY_MS)
    assert exc.value.errcode == "INVALID_TIME_RANGE"


def test_selector_is_checked_before_window(db, scope) -> None:
    with pytest.raises(ValidationError) as exc:
        reports.alert_report(db, _FakeClickHouse(), scope.account_id, starttime=10, endtime=5)
    assert exc.value.errcode == "INVALID_INPUT"


def test_alert_report_enriches_and_sorts(db, scope, make_geofence, make_rule) -> None:
    depot = make_geofence("Depot")
    rule = make_rule("Depot watch", [(depot["geofenceid"], "ENTRY")])
    bucket = T0 // reports.BUCKET_MS
    clickhouse = _FakeClickHouse(
        {
            f"geoalertdata_{bucket}": [
                {"ruleid": rule["ruleid"], "vinno": VIN_2, "alerttime": str(T0 + 60_000), "alerttype": "EXIT",
                 "alertid": "a2", "soc": "81.5", "lat": "12.97", "lng": "77.59", "proctime": str(T0 + 61_000)},
                {"ruleid": rule["ruleid"], "vinno": VIN_1, "alerttime": str(T0), "alerttype": "ENTRY",
                 "alertid": "a1", "soc": "82", "lat": "12.97", "lng": "77.59", "proctime": str(T0 + 1_000)},
                {"ruleid": "unknown-rule", "vinno": VIN_1, "alerttime": str(T0 + 5), "alerttype": "ENTRY",
                 "alertid": "a3", "soc": None, "lat": "1", "lng": "1", "proctime": None},
            ]
        }
    )

    rows = reports.alert_report(
        db, clickhouse, scope.account_id, starttime=T0 - 1_000, endtime=T0 + 120_000, vinnos=[VIN_1, VIN_2]
    )

    assert [r["alertid"] for r in rows] == ["a1", "a2"]
    first = rows[0]
    assert first["regno"] == "KA01AB0001"
    assert first["alerttime"] == "5 Jan 2025 | 13:04:05"
    assert first["alerttimeepoch"] == T0
    assert first["soc"] == 82
    assert first["rulename"] == "Depot watch"
    assert first["geofencename"] == "Depot"
    assert first["geofenceactiontype"] == "Entry"
    assert first["fleetid"] == scope.fleet_id
    # no plate on record, fall back to the VIN
    assert rows[1]["regno"] == VIN_2

    assert len(clickhouse.queries) == 1
    sql, params = clickhouse.queries[0]
    assert "WHERE vinno IN" in sql
    assert params["ids"] == [VIN_1, VIN_2]
    assert params["accountid"] == scope.account_id


def test_trip_report_drops_long_trips(db, scope, make_geofence, make_rule) -> None:
    gate_a = make_geofence("Gate A")
    gate_b = make_geofence("Gate B")
    rule = make_rule("Gate trip", [(gate_a["geofenceid"], "ENTRY"), (gate_b["geofenceid"], "ENTRY")], ruletypeid="TRIP")
    bucket = T0 // reports.BUCKET_MS

    def _trip(tripid, start, end):
        return {"vinno": VIN_1, "ruleid": rule["ruleid"], "tripid": tripid, "tripstarttime": start,
                "tripendtime": end, "startodo": 100, "endodo": "142.5", "proctime": end}

    clickhouse = _FakeClickHouse(
        {
            f"geotripdata_{bucket}": [
                _trip("long", T0, T0 + reports.MAX_TRIP_MS + 1),
                _trip("short", T0 + 10, T0 + 3_600_000),
            ]
        }
    )
    rows = reports.trip_report(
        db, clickhouse, scope.account_id, starttime=T0 - 1_000, endtime=T0 + DAY_MS // 2, ruleids=[rule["ruleid"]]
    )

    assert [r["tripid"] for r in rows] == ["short"]
    trip = rows[0]
    assert trip["startgeofencename"] == "Gate A"
    assert trip["endgeofencename"] == "Gate B"
    assert trip["startodo"] == 100
    assert trip["endodo"] == 142.5
    assert "WHERE ruleid IN" in clickhouse.queries[0][0]


def test_report_queries_every_bucket(db, scope) -> None:
    clickhouse = _FakeClickHouse()
    start = 30 * DAY_MS * 600
    rows = reports.alert_report(
        db, clickhouse, scope.account_id, starttime=start, endtime=start + 65 * DAY_MS, ruleids=["r1"]
    )
    assert rows == []
    tables = sorted(sql.split("FROM ")[1].split()[0] for sql, _ in clickhouse.queries)
    assert tables == ["geoalertdata_600", "geoalertdata_601", "geoalertdata_602"]


def test_facts_of_deleted_rule_are_dropped(db, scope, make_geofence, make_rule) -> None:
    gate_a = make_geofence("Gate A")
    gate_b = make_geofence("Gate B")
    kept = make_rule("Gate A watch", [(gate_a["geofenceid"], "ENTRY")])
    gone = make_rule("Gate trip", [(gate_a["geofenceid"], "ENTRY"), (gate_b["geofenceid"], "ENTRY")], ruletypeid="TRIP")
    rules.update_rule_state(db, scope, gone["ruleid"], False)
    rules.delete_rule(db, scope, gone["ruleid"])
    bucket = T0 // reports.BUCKET_MS

    clickhouse = _FakeClickHouse(
        {
            f"geoalertdata_{bucket}": [
                {"ruleid": gone["ruleid"], "vinno": VIN_1, "alerttime": T0, "alerttype": "ENTRY",
                 "alertid": "gone", "lat": 1, "lng": 1},
                {"ruleid": kept["ruleid"], "vinno": VIN_1, "alerttime": T0 + 5, "alerttype": "ENTRY",
                 "alertid": "kept", "lat": 1, "lng": 1},
            ],
            f"geotripdata_{bucket}": [
                {"vinno": VIN_1, "ruleid": gone["ruleid"], "tripid": "t1", "tripstarttime": T0,
                 "tripendtime": T0 + 60_000},
            ],
        }
    )
    window = dict(starttime=T0 - 1_000, endtime=T0 + DAY_MS // 2, vinnos=[VIN_1])

    alerts = reports.alert_report(db, clickhouse, scope.account_id, **window)
    assert [r["alertid"] for r in alerts] == ["kept"]
    assert reports.trip_report(db, clickhouse, scope.account_id, **window) == []
