# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - queries.py: POST /queries, POST /structured-queries, GET /queries
#   - deps.py: dependencies resolving the pipeline collaborators
# =============================================================================
