# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# API request/response schemas. Separate from the ORM models in
# app/db/models.py.
# =============================================================================
