"""
Geofence alert and trip reports.

Facts live in ClickHouse in one table per 30-day bucket
(``geoalertdata_<bucket>`` / ``geotripdata_<bucket>``). A report queries
every bucket the time range touches concurrently, then enriches the rows
from the relational store (rule name, bound geofences, registration
number) and formats times for display in IST.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.errors import ValidationError, normalize_errors
from ..core.timeutils import epoch_ms, format_ist
from ..integrations.clickhouse import ClickHouseClient
from ..models.fms import Vehicle
from ..models.geofence import Geofence
from ..models.rule import GeofenceRule, GeofenceRuleInfo, RuleGeofenceAction

logger = logging.getLogger("reports")

BUCKET_MS = 30 * 86_400_000
MAX_TRIP_MS = 43_020_000
MAX_BUCKET_WORKERS = 8

ALERT_COLUMNS = "ruleid, vinno, alerttime, alerttype, alertid, odo, speed, soc, lat, lng, alertdata, proctime"
TRIP_COLUMNS = (
    "vinno, ruleid, tripstarttime, tripendtime, tripid, startlat, startlng, endlat, endlng, "
    "startodo, endodo, startsoc, endsoc, proctime"
)


def clh_time_bucket_range(starttime: int, endtime: int) -> list[int]:
    """Inclusive list of bucket numbers covering [starttime, endtime]."""
    if starttime > endtime:
        return []
    first = int(starttime) // BUCKET_MS
    last = int(endtime) // BUCKET_MS
    return list(range(first, last + 1))


def validate_report_window(starttime: int, endtime: int, now_ms: Optional[int] = None) -> list[int]:
    now_ms = epoch_ms() if now_ms is None else now_ms
    if starttime >= endtime or endtime > now_ms or starttime < 0:
        raise ValidationError("INVALID_TIME_RANGE")
    buckets = clh_time_bucket_range(starttime, endtime)
    if not buckets:
        raise ValidationError("NO_VALID_TIME_BUCKETS")
    return buckets


def _selector(vinnos: Optional[list[str]], ruleids: Optional[list[str]]) -> tuple[str, list[str]]:
    # vinnos win when both are given
    if vinnos:
        return "vinno", list(vinnos)
    if ruleids:
        return "ruleid", list(ruleids)
    raise ValidationError("INVALID_INPUT")


def _alert_sql(bucket: int, column: str) -> str:
    return f"""
        SELECT {ALERT_COLUMNS}
        FROM geoalertdata_{int(bucket)}
        WHERE {column} IN {{ids:Array(String)}}
            AND alerttime >= {{starttime:Int64}}
            AND alerttime <= {{endtime:Int64}}
            AND lng != 0
            AND lat != 0
            AND accountid = {{accountid:String}}
    """


def _trip_sql(bucket: int, column: str) -> str:
    return f"""
        SELECT {TRIP_COLUMNS}
        FROM geotripdata_{int(bucket)}
        WHERE {column} IN {{ids:Array(String)}}
            AND tripstarttime >= {{starttime:Int64}}
            AND tripstarttime <= {{endtime:Int64}}
            AND accountid = {{accountid:String}}
    """


def _fan_out(client: ClickHouseClient, statements: list[str], params: dict[str, Any]) -> list[dict]:
    """Run one statement per bucket concurrently; any failure fails the report."""
    workers = max(1, min(len(statements), MAX_BUCKET_WORKERS))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clh-bucket") as pool:
        results = list(pool.map(lambda sql: client.query(sql, params), statements))
    return [row for rows in results for row in rows]


def rule_details_map(db: Session, account_id: str, rule_ids: list[str]) -> dict[str, dict[str, Any]]:
    """Rule name plus bound geofences (seqno order) for every rule id."""
    rule_ids = list({r for r in rule_ids if r})
    if not rule_ids:
        return {}
    rows = (
        db.query(
            GeofenceRule.ruleid,
            GeofenceRule.rulename,
            Geofence.geofenceid,
            Geofence.fleetid,
            Geofence.geofencename,
            GeofenceRuleInfo.actiontypeid,
            RuleGeofenceAction.actiontype,
            GeofenceRuleInfo.seqno,
        )
        .join(GeofenceRuleInfo, GeofenceRuleInfo.ruleid == GeofenceRule.ruleid)
        .join(Geofence, Geofence.geofenceid == GeofenceRuleInfo.geofenceid)
        .join(RuleGeofenceAction, RuleGeofenceAction.actiontypeid == GeofenceRuleInfo.actiontypeid)
        .filter(GeofenceRule.accountid == account_id, GeofenceRule.ruleid.in_(rule_ids))
        .order_by(GeofenceRule.ruleid, GeofenceRuleInfo.seqno)
        .all()
    )
    details: dict[str, dict[str, Any]] = {}
    for ruleid, rulename, geofenceid, fleetid, geofencename, actiontypeid, actiontype, seqno in rows:
        entry = details.setdefault(ruleid, {"ruleid": ruleid, "rulename": rulename, "geofences": []})
        entry["geofences"].append(
            {
                "geofenceid": geofenceid,
                "geofencename": geofencename,
                "fleetid": fleetid,
                "actiontypeid": actiontypeid,
                "actiontype": actiontype,
                "seqno": seqno,
            }
        )
    return details


def vehicle_regno_map(db: Session, vinnos: list[str]) -> dict[str, str]:
    vinnos = list({v for v in vinnos if v})
    if not vinnos:
        return {}
    rows = db.query(Vehicle.vinno, Vehicle.license_plate).filter(Vehicle.vinno.in_(vinnos)).all()
    return {vinno: plate or vinno for vinno, plate in rows}


def _num(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    number = float(value)
    return int(number) if number.is_integer() else number


def enrich_alerts(rows: list[dict], rules: dict[str, dict], regnos: dict[str, str]) -> list[dict[str, Any]]:
    enriched = []
    for row in rows:
        rule = rules.get(row.get("ruleid"))
        if not rule or not rule.get("rulename"):
            continue
        first = rule["geofences"][0] if rule["geofences"] else {}
        enriched.append(
            {
                **row,
                "rulename": rule["rulename"],
                "regno": regnos.get(row.get("vinno")),
                "geofencename": first.get("geofencename"),
                "geofenceid": first.get("geofenceid"),
                "geofenceactiontype": first.get("actiontype"),
                "fleetid": first.get("fleetid"),
            }
        )
    enriched.sort(key=lambda item: int(item["alerttime"]))
    return enriched


def enrich_trips(rows: list[dict], rules: dict[str, dict], regnos: dict[str, str]) -> list[dict[str, Any]]:
    enriched = []
    for row in rows:
        rule = rules.get(row.get("ruleid"))
        if not rule or not rule.get("rulename"):
            continue
        first = rule["geofences"][0] if rule["geofences"] else {}
        last = rule["geofences"][-1] if rule["geofences"] else {}
        enriched.append(
            {
                **row,
                "rulename": rule["rulename"],
                "regno": regnos.get(row.get("vinno")),
                "startgeofencename": first.get("geofencename"),
                "startgeofenceid": first.get("geofenceid"),
                "startgeofenceactiontype": first.get("actiontype"),
                "startgeofencefleetid": first.get("fleetid"),
                "endgeofencename": last.get("geofencename"),
                "endgeofenceid": last.get("geofenceid"),
                "endgeofenceactiontype": last.get("actiontype"),
                "endgeofencefleetid": last.get("fleetid"),
            }
        )
    enriched.sort(key=lambda item: int(item["tripstarttime"]))
    return enriched


def format_alert(item: dict) -> dict[str, Any]:
    alerttime = int(item["alerttime"])
    return {
        "vinno": item.get("vinno"),
        "regno": item.get("regno"),
        "alerttime": format_ist(alerttime),
        "alerttimeepoch": alerttime,
        "alerttype": item.get("alerttype"),
        "alertid": item.get("alertid"),
        "soc": _num(item.get("soc")),
        "lat": _num(item.get("lat")),
        "lng": _num(item.get("lng")),
        "rulename": item.get("rulename") or "",
        "geofencename": item.get("geofencename") or "",
        "geofenceid": item.get("geofenceid"),
        "fleetid": item.get("fleetid"),
        "geofenceactiontype": item.get("geofenceactiontype") or "",
        "proctime": format_ist(_num(item.get("proctime"))),
    }


def format_trip(item: dict) -> dict[str, Any]:
    start, end = int(item["tripstarttime"]), int(item["tripendtime"])
    return {
        "vinno": item.get("vinno"),
        "regno": item.get("regno"),
        "tripstarttime": format_ist(start),
        "tripstarttimeepoch": start,
        "tripendtime": format_ist(end),
        "tripendtimeepoch": end,
        "tripid": item.get("tripid"),
        "startlat": _num(item.get("startlat")),
        "startlng": _num(item.get("startlng")),
        "endlat": _num(item.get("endlat")),
        "endlng": _num(item.get("endlng")),
        "rulename": item.get("rulename") or "",
        "startgeofencename": item.get("startgeofencename") or "",
        "startgeofenceid": item.get("startgeofenceid"),
        "startgeofencefleetid": item.get("startgeofencefleetid"),
        "startgeofenceactiontype": item.get("startgeofenceactiontype") or "",
        "endgeofencename": item.get("endgeofencename") or "",
        "endgeofenceid": item.get("endgeofenceid"),
        "endgeofencefleetid": item.get("endgeofencefleetid"),
        "endgeofenceactiontype": item.get("endgeofenceactiontype") or "",
        "startodo": _num(item.get("startodo")),
        "endodo": _num(item.get("endodo")),
        "startsoc": _num(item.get("startsoc")),
        "endsoc": _num(item.get("endsoc")),
        "proctime": format_ist(_num(item.get("proctime"))),
    }


@normalize_errors(logger)
def alert_report(
    db: Session,
    client: ClickHouseClient,
    account_id: str,
    *,
    starttime: int,
    endtime: int,
    vinnos: Optional[list[str]] = None,
    ruleids: Optional[list[str]] = None,
) -> list[dict[str, Any]]:
    column, ids = _selector(vinnos, ruleids)
    buckets = validate_report_window(starttime, endtime)
    params = {"ids": ids, "starttime": starttime, "endtime": endtime, "accountid": account_id}
    rows = _fan_out(client, [_alert_sql(b, column) for b in buckets], params)
    logger.info("Alert report account_id=%s buckets=%s rows=%s", account_id, len(buckets), len(rows))

    rules = rule_details_map(db, account_id, [r.get("ruleid") for r in rows])
    regnos = vehicle_regno_map(db, [r.get("vinno") for r in rows])
    return [format_alert(item) for item in enrich_alerts(rows, rules, regnos)]


@normalize_errors(logger)
def trip_report(
    db: Session,
    client: ClickHouseClient,
    account_id: str,
    *,
    starttime: int,
    endtime: int,
    vinnos: Optional[list[str]] = None,
    ruleids: Optional[list[str]] = None,
) -> list[dict[str, Any]]:
    column, ids = _selector(vinnos, ruleids)
    buckets = validate_report_window(starttime, endtime)
    params = {"ids": ids, "starttime": starttime, "endtime": endtime, "accountid": account_id}
    rows = _fan_out(client, [_trip_sql(b, column) for b in buckets], params)
    rows = [r for r in rows if int(r["tripendtime"]) - int(r["tripstarttime"]) <= MAX_TRIP_MS]
    logger.info("Trip report account_id=%s buckets=%s rows=%s", account_id, len(buckets), len(rows))

    rules = rule_details_map(db, account_id, [r.get("ruleid") for r in rows])
    regnos = vehicle_regno_map(db, [r.get("vinno") for r in rows])
    return [format_trip(item) for item in enrich_trips(rows, rules, regnos)]
