# =============================================================================
# QueryGenius BI Assistant
# =============================================================================
# Answers free-form business questions by routing them to a data backend
# (spreadsheet export, generated SQL, or a generated REST query) and turning
# the rows into a narrative report.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers and dependencies
#   ├── agents/       → Pipeline stages and the LangGraph orchestrator
#   ├── db/           → Async engine, session factory, ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Reasoning providers, stores, SQL runner, errors
# =============================================================================
