# =============================================================================
# Agents Package — Query Pipeline Stages
# =============================================================================
#   - classifier.py: special-case source vs general database
#   - generator.py: question → SQL text or REST descriptor (with fallback)
#   - executor.py: run SQL, fetch REST rows, fetch + parse CSV export
#   - formatter.py: rows → narrative report (with plain-text fallback)
#   - orchestrator.py: LangGraph graphs wiring the stages together
#   - artifacts.py / parsing.py: shared types and response parsing
# =============================================================================
