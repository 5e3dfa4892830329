import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.geofence import Geofence
from app.services import geofences, rules
from app.services.access import Scope

from conftest import ACCOUNT, CIRCLE, FLEET_B, POLYGON, USER


def test_create_circle_geofence(make_geofence, scope) -> None:
    created = make_geofence("Depot")
    assert created["fleetid"] == scope.fleet_id
    assert created["geofencename"] == "Depot"
    assert created["geofenceinfo"] == {"type": "circle", "latlngs": CIRCLE["latlngs"], "radius": 500.0}
    assert created["meta"]["center"] == {"lat": 12.9716, "lng": 77.5946}


def test_duplicate_name_in_fleet_is_rejected(make_geofence) -> None:
    make_geofence("Depot")
    with pytest.raises(ConflictError) as exc:
        make_geofence("Depot")
    assert exc.value.errcode == "GEOFENCE_EXISTS"


def test_same_name_allowed_in_another_fleet(make_geofence) -> None:
    make_geofence("Depot")
    other = make_geofence("Depot", in_scope=Scope(account_id=ACCOUNT, fleet_id=FLEET_B, user_id=USER))
    assert other["fleetid"] == FLEET_B


@pytest.mark.parametrize(
    "info, errcode",
    [
        ({"type": "circle", "latlngs": [{"lat": 1.0, "lng": 1.0}], "radius": 0}, "INVALID_RADIUS"),
        ({"type": "circle", "latlngs": [{"lat": 1.0, "lng": 1.0}], "radius": -5}, "INVALID_RADIUS"),
        (
            {"type": "circle", "latlngs": [{"lat": 1.0, "lng": 1.0}, {"lat": 2.0, "lng": 2.0}], "radius": 10},
            "INVALID_CIRCLE",
        ),
        ({"type": "polygon", "latlngs": [{"lat": 1.0, "lng": 1.0}, {"lat": 2.0, "lng": 2.0}]}, "INVALID_POLYGON"),
    ],
)
def test_invalid_shapes_are_rejected(make_geofence, info, errcode) -> None:
    with pytest.raises(ValidationError) as exc:
        make_geofence("Bad shape", info)
    assert exc.value.errcode == errcode


def test_three_point_polygon_is_accepted(make_geofence) -> None:
    created = make_geofence("Yard", POLYGON)
    assert created["geofenceinfo"]["type"] == "polygon"
    assert len(created["geofenceinfo"]["latlngs"]) == 3


def test_deleted_name_can_be_reused(db, scope, make_geofence) -> None:
    first = make_geofence("Depot")
    geofences.update_geofence_state(db, scope, first["geofenceid"], False)
    assert geofences.delete_geofence(db, scope, first["geofenceid"]) is True

    tombstone = db.get(Geofence, first["geofenceid"])
    assert tombstone.isdeleted is True
    assert tombstone.geofencename.startswith("Depot_")
    assert tombstone.geofencename.endswith("_deleted")

    again = make_geofence("Depot")
    assert again["geofenceid"] != first["geofenceid"]


def test_active_geofence_cannot_be_deleted(db, scope, make_geofence) -> None:
    created = make_geofence("Depot")
    with pytest.raises(ConflictError) as exc:
        geofences.delete_geofence(db, scope, created["geofenceid"])
    assert exc.value.errcode == "GEOFENCE_ACTIVE"


def test_geofence_in_use_cannot_be_deactivated_or_deleted(db, scope, make_geofence, make_rule) -> None:
    created = make_geofence("Depot")
    make_rule("Depot watch", [(created["geofenceid"], "ENTRY")])

    with pytest.raises(ConflictError) as exc:
        geofences.update_geofence_state(db, scope, created["geofenceid"], False)
    assert exc.value.errcode == "GEOFENCE_IN_USE"

    # activation has no in-use guard
    result = geofences.update_geofence_state(db, scope, created["geofenceid"], True)
    assert result["message"] == "Geofence activated successfully"

    db.query(Geofence).filter(Geofence.geofenceid == created["geofenceid"]).update({Geofence.isactive: False})
    db.commit()
    with pytest.raises(ConflictError) as exc:
        geofences.delete_geofence(db, scope, created["geofenceid"])
    assert exc.value.errcode == "GEOFENCE_IN_USE"


def test_update_rejects_name_of_another_geofence(db, scope, make_geofence) -> None:
    make_geofence("Depot")
    other = make_geofence("Yard")
    with pytest.raises(ConflictError) as exc:
        geofences.update_geofence(db, scope, other["geofenceid"], geofencename="Depot")
    assert exc.value.errcode == "GEOFENCE_NAME_EXISTS"


def test_update_keeps_own_name_and_changes_shape(db, scope, make_geofence) -> None:
    created = make_geofence("Depot")
    updated = geofences.update_geofence(
        db, scope, created["geofenceid"], geofencename="Depot", geofenceinfo=dict(POLYGON)
    )
    assert updated["geofencename"] == "Depot"
    assert updated["geofenceinfo"]["type"] == "polygon"


def test_geofence_of_other_fleet_is_not_found(db, make_geofence) -> None:
    created = make_geofence("Depot")
    other_scope = Scope(account_id=ACCOUNT, fleet_id=FLEET_B, user_id=USER)
    with pytest.raises(NotFoundError) as exc:
        geofences.get_geofence_by_id(db, other_scope, created["geofenceid"])
    assert exc.value.errcode == "GEOFENCE_NOT_FOUND"


def test_list_includes_bound_rules(db, scope, make_geofence, make_rule) -> None:
    depot = make_geofence("Depot")
    make_geofence("Yard", POLYGON)
    rule = make_rule("Depot watch", [(depot["geofenceid"], "ENTRY_EXIT")])

    listed = {g["geofencename"]: g for g in geofences.list_geofences(db, ACCOUNT, [scope.fleet_id])}
    assert set(listed) == {"Depot", "Yard"}
    assert [r["ruleid"] for r in listed["Depot"]["rules"]] == [rule["ruleid"]]
    assert listed["Yard"]["rules"] == []


def test_list_geo_rules(db, scope, make_geofence, make_rule) -> None:
    depot = make_geofence("Depot")
    rule = make_rule("Depot watch", [(depot["geofenceid"], "ENTRY")])

    result = geofences.list_geo_rules(db, scope, depot["geofenceid"])
    assert result["geofenceid"] == depot["geofenceid"]
    assert len(result["rules"]) == 1
    row = result["rules"][0]
    assert row["ruleid"] == rule["ruleid"]
    assert row["actiontype"] == "Entry"
    assert row["createdby"] == USER
    assert "|" in row["createdat"]


def test_state_with_rule_flips_both(db, scope, make_geofence, make_rule) -> None:
    depot = make_geofence("Depot")
    rule = make_rule("Depot watch", [(depot["geofenceid"], "ENTRY")])

    result = geofences.update_geofence_state_with_rule(db, scope, depot["geofenceid"], rule["ruleid"], False)
    assert result["message"] == "Geofence deactivated successfully"
    assert geofences.get_geofence_by_id(db, scope, depot["geofenceid"])["isactive"] is False
    assert rules.get_rule_by_id(db, scope, rule["ruleid"])["isactive"] is False


def test_action_info_listing_filters_and_skips(db, scope, make_geofence, make_rule) -> None:
    depot = make_geofence("Depot")
    make_geofence("Unbound")
    yard = make_geofence("Yard", POLYGON)
    gate_a = make_geofence("Gate A")
    gate_b = make_geofence("Gate B")

    make_rule("Depot watch", [(depot["geofenceid"], "ENTRY_EXIT")])
    make_rule("Yard watch", [(yard["geofenceid"], "EXIT")])
    make_rule("Gate trip", [(gate_a["geofenceid"], "ENTRY"), (gate_b["geofenceid"], "ENTRY")], ruletypeid="TRIP")

    listed = geofences.list_geofences_with_action_info(db, scope)
    assert [item["geofencename"] for item in listed] == ["Depot"]
    assert listed[0]["actiontypeid"] == "ENTRY_EXIT"
    assert listed[0]["actiontype"] == "Entry/Exit"
    assert listed[0]["vehicles"] == []
