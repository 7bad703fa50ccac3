# =============================================================================
# Database Package
# =============================================================================
# Lazily created async SQLAlchemy engine and the `queries` ORM model.
# =============================================================================
