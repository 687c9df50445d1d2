"""
Feature modules live under this package.

Each module owns its models, service layer and JSON routes (`api.py`),
reusing platform primitives (role sessions, audit, storage, DB session, OTP).
"""
