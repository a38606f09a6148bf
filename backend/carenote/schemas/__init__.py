"""
CareNote Backend — Pydantic Request/Response Schemas
======================================================

API contracts, kept separate from the SQLAlchemy models so internal fields
(password hashes, tokens) never leak into responses.
"""
