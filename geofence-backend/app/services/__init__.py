"""
Service layer for the geofence backend.

Each module is one store (geofences, rules, assignments), the composite
workflows built on them, the report query layer, or the access checks
every handler runs first.
"""
