"""
Feature modules live under this package.

Each module owns its models, service (state machine) and API blueprint, and
reuses the platform primitives: audit, storage, events, DB session.
"""
