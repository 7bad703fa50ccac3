# =============================================================================
# Services Package — Infrastructure Behind the Pipeline
# =============================================================================
#   - llm.py: reasoning providers (webhook, Anthropic, OpenAI-compatible)
#   - storage.py: append-only query store (memory, database)
#   - sql_runner.py: executes generated SQL
#   - errors.py: PipelineError taxonomy
# =============================================================================
