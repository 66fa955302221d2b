"""
Storage Package.

Durable state for the detection engine.

Modules:
- database: Engine, sessions, schema creation
- models/: ORM models
- repositories/: Data access layer
"""
