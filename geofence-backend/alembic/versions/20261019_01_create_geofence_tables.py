"""create geofence, rule and assignment tables

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _audit_columns(*, created: bool = True) -> list[sa.Column]:
    cols = []
    if created:
        cols += [
            sa.Column("createdat", sa.DateTime(timezone=True), nullable=False),
            sa.Column("createdby", sa.String(length=36), nullable=True),
        ]
    cols += [
        sa.Column("updatedat", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updatedby", sa.String(length=36), nullable=True),
    ]
    return cols


def upgrade() -> None:
    ruletype = op.create_table(
        "geofenceruletype",
        sa.Column("ruletypeid", sa.String(length=32), primary_key=True),
        sa.Column("ruletype", sa.String(length=64), nullable=False),
    )
    actiontype = op.create_table(
        "rulegeofenceaction",
        sa.Column("actiontypeid", sa.String(length=32), primary_key=True),
        sa.Column("actiontype", sa.String(length=64), nullable=False),
    )

    op.create_table(
        "geofence",
        sa.Column("geofenceid", sa.String(length=36), primary_key=True),
        sa.Column("accountid", sa.String(length=36), nullable=False),
        sa.Column("fleetid", sa.String(length=36), nullable=False),
        sa.Column("geofencename", sa.String(length=255), nullable=False),
        sa.Column("isactive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("geofenceinfo", JSON_TYPE, nullable=False),
        sa.Column("meta", JSON_TYPE, nullable=False),
        *_audit_columns(),
        sa.Column("isdeleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_geofence_account_fleet", "geofence", ["accountid", "fleetid"])

    op.create_table(
        "geofencerule",
        sa.Column("ruleid", sa.String(length=36), primary_key=True),
        sa.Column("accountid", sa.String(length=36), nullable=False),
        sa.Column("fleetid", sa.String(length=36), nullable=False),
        sa.Column("rulename", sa.String(length=255), nullable=False),
        sa.Column("ruletypeid", sa.String(length=32), nullable=False),
        sa.Column("isactive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("rulemeta", JSON_TYPE, nullable=False),
        *_audit_columns(),
        sa.Column("isdeleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_geofencerule_account_fleet", "geofencerule", ["accountid", "fleetid"])

    op.create_table(
        "geofenceruleinfo",
        sa.Column("accountid", sa.String(length=36), primary_key=True),
        sa.Column("fleetid", sa.String(length=36), primary_key=True),
        sa.Column("ruleid", sa.String(length=36), primary_key=True),
        sa.Column("geofenceid", sa.String(length=36), primary_key=True),
        sa.Column("seqno", sa.Integer(), primary_key=True),
        sa.Column("actiontypeid", sa.String(length=32), nullable=False),
        sa.Column("geofencerulemeta", JSON_TYPE, nullable=False),
        *_audit_columns(created=False),
    )
    op.create_index(
        "ix_geofenceruleinfo_geofence", "geofenceruleinfo", ["accountid", "fleetid", "geofenceid"]
    )

    op.create_table(
        "geofencerulevehicle",
        sa.Column("accountid", sa.String(length=36), primary_key=True),
        sa.Column("fleetid", sa.String(length=36), primary_key=True),
        sa.Column("ruleid", sa.String(length=36), primary_key=True),
        sa.Column("vinno", sa.String(length=17), primary_key=True),
        sa.Column("createdat", sa.DateTime(timezone=True), nullable=False),
        sa.Column("createdby", sa.String(length=36), nullable=True),
    )
    op.create_table(
        "geofencerulefleet",
        sa.Column("accountid", sa.String(length=36), primary_key=True),
        sa.Column("fleetid", sa.String(length=36), primary_key=True),
        sa.Column("ruleid", sa.String(length=36), primary_key=True),
        sa.Column("subfleetid", sa.String(length=36), primary_key=True),
        *_audit_columns(),
    )
    op.create_table(
        "geofenceruleuser",
        sa.Column("accountid", sa.String(length=36), primary_key=True),
        sa.Column("fleetid", sa.String(length=36), primary_key=True),
        sa.Column("ruleid", sa.String(length=36), primary_key=True),
        sa.Column("userid", sa.String(length=36), primary_key=True),
        sa.Column("alertmeta", JSON_TYPE, nullable=False),
        *_audit_columns(),
    )

    op.bulk_insert(
        ruletype,
        [
            {"ruletypeid": "ENTRY_EXIT", "ruletype": "Entry/Exit"},
            {"ruletypeid": "TRIP", "ruletype": "Trip"},
        ],
    )
    op.bulk_insert(
        actiontype,
        [
            {"actiontypeid": "ENTRY", "actiontype": "Entry"},
            {"actiontypeid": "EXIT", "actiontype": "Exit"},
            {"actiontypeid": "ENTRY_EXIT", "actiontype": "Entry/Exit"},
            {"actiontypeid": "TRIP", "actiontype": "Trip"},
        ],
    )


def downgrade() -> None:
    op.drop_table("geofenceruleuser")
    op.drop_table("geofencerulefleet")
    op.drop_table("geofencerulevehicle")
    op.drop_index("ix_geofenceruleinfo_geofence", table_name="geofenceruleinfo")
    op.drop_table("geofenceruleinfo")
    op.drop_index("ix_geofencerule_account_fleet", table_name="geofencerule")
    op.drop_table("geofencerule")
    op.drop_index("ix_geofence_account_fleet", table_name="geofence")
    op.drop_table("geofence")
    op.drop_table("rulegeofenceaction")
    op.drop_table("geofenceruletype")
