"""
Database Models

This package defines the database models for the AuthGate service using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- session.py: Cached provider sessions, one row per audience and identity
- login_attempt.py: Append-only audit trail of authentication attempts
- health.py: Health monitoring gauge (not persisted)

Sessions are written with upserts so that an identity never has more than one
row per audience. Login attempts are only ever inserted.
"""
