"""
Feature modules live under this package.

Each module owns its models/service/admin routes and reuses the platform
primitives (auth, admin gate, audit, storage, DB session).
"""
