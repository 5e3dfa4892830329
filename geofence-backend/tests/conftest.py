import os

# In-memory DB, no migrations, and external services that never answer.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("FMS_API_URL", "http://fms.invalid")
os.environ.setdefault("CLICKHOUSE_URLS", "http://clickhouse.invalid:8123")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base
from app.models.fms import (
    AccountVehicleSubscription,
    FleetTree,
    FleetUserRole,
    FleetVehicle,
    FmsUser,
    UserFleet,
    Vehicle,
)
from app.services import geofences, rules
from app.services.access import Scope
from app.services.lookup_seed import seed_lookups


ACCOUNT = "11111111-1111-4111-8111-111111111111"
OTHER_ACCOUNT = "22222222-2222-4222-8222-222222222222"

USER = "aaaaaaaa-0000-4000-8000-000000000001"
MEMBER = "aaaaaaaa-0000-4000-8000-000000000002"
OUTSIDER = "aaaaaaaa-0000-4000-8000-000000000003"

# ROOT -> A -> (B, C); ROOT -> D. USER holds a role on A only.
ROOT = "f0000000-0000-4000-8000-000000000000"
FLEET_A = "f0000000-0000-4000-8000-00000000000a"
FLEET_B = "f0000000-0000-4000-8000-00000000000b"
FLEET_C = "f0000000-0000-4000-8000-00000000000c"
FLEET_D = "f0000000-0000-4000-8000-00000000000d"

VIN_1 = "MA1TEST0000000001"
VIN_2 = "MA1TEST0000000002"
VIN_B = "MA1TEST0000000003"
VIN_FOREIGN = "MA1TEST0000000099"

CIRCLE = {"type": "circle", "latlngs": [{"lat": 12.9716, "lng": 77.5946}], "radius": 500.0}
POLYGON = {
    "type": "polygon",
    "latlngs": [
        {"lat": 12.97, "lng": 77.59},
        {"lat": 12.98, "lng": 77.60},
        {"lat": 12.96, "lng": 77.61},
    ],
    "radius": None,
}
META = {
    "address": "MG Road, Bengaluru",
    "tag": ["depot"],
    "center": {"lat": 12.9716, "lng": 77.5946},
    "colour": "#ff0000",
    "area": "0.78 sq km",
}


def _seed_reference(db) -> None:
    db.add_all(
        [
            FleetTree(accountid=ACCOUNT, fleetid=ROOT, pfleetid=None, name="Root", isdeleted=False),
            FleetTree(accountid=ACCOUNT, fleetid=FLEET_A, pfleetid=ROOT, name="Fleet A", isdeleted=False),
            FleetTree(accountid=ACCOUNT, fleetid=FLEET_B, pfleetid=FLEET_A, name="Fleet B", isdeleted=False),
            FleetTree(accountid=ACCOUNT, fleetid=FLEET_C, pfleetid=FLEET_A, name="Fleet C", isdeleted=False),
            FleetTree(accountid=ACCOUNT, fleetid=FLEET_D, pfleetid=ROOT, name="Fleet D", isdeleted=False),
            FleetUserRole(accountid=ACCOUNT, fleetid=FLEET_A, userid=USER, roleid="fleet-admin"),
            FmsUser(userid=USER, displayname="Asha"),
            FmsUser(userid=MEMBER, displayname="Bala"),
            FmsUser(userid=OUTSIDER, displayname="Chitra"),
            UserFleet(accountid=ACCOUNT, fleetid=FLEET_A, userid=USER),
            UserFleet(accountid=ACCOUNT, fleetid=FLEET_A, userid=MEMBER),
            Vehicle(vinno=VIN_1, license_plate="KA01AB0001"),
            Vehicle(vinno=VIN_2, license_plate=None),
            Vehicle(vinno=VIN_B, license_plate="KA01AB0003"),
            Vehicle(vinno=VIN_FOREIGN, license_plate="KA01AB0099"),
            FleetVehicle(accountid=ACCOUNT, fleetid=FLEET_A, vinno=VIN_1),
            FleetVehicle(accountid=ACCOUNT, fleetid=FLEET_A, vinno=VIN_2),
            FleetVehicle(accountid=ACCOUNT, fleetid=FLEET_B, vinno=VIN_B),
            FleetVehicle(accountid=OTHER_ACCOUNT, fleetid=FLEET_D, vinno=VIN_FOREIGN),
            AccountVehicleSubscription(accountid=ACCOUNT, vinno=VIN_1),
        ]
    )
    db.commit()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    with factory() as db:
        seed_lookups(db)
        _seed_reference(db)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scope() -> Scope:
    return Scope(account_id=ACCOUNT, fleet_id=FLEET_A, user_id=USER)


@pytest.fixture
def make_geofence(db, scope):
    def _make(name: str = "Depot", info: dict | None = None, *, in_scope: Scope | None = None) -> dict:
        return geofences.create_geofence(
            db,
            in_scope or scope,
            geofencename=name,
            geofenceinfo=dict(info or CIRCLE),
            meta=dict(META),
        )

    return _make


@pytest.fixture
def make_rule(db, scope):
    def _make(name: str, bindings: list[tuple[str, str]], ruletypeid: str = "ENTRY_EXIT") -> dict:
        """``bindings`` is a list of (geofenceid, actiontypeid) in seqno order."""
        return rules.create_rule(
            db,
            scope,
            rulename=name,
            ruletypeid=ruletypeid,
            rulemeta={"speedlimit": 40},
            bindings=[
                {"geofenceid": geofence_id, "seqno": seqno, "actiontypeid": action, "meta": {}}
                for seqno, (geofence_id, action) in enumerate(bindings)
            ],
        )

    return _make
