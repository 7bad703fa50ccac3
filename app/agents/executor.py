# =============================================================================
# Source Executor — Run an Artifact Against Its Backend
# =============================================================================
#
#   run_sql()            SqlArtifact     → SqlRunner (rows as dicts)
#   fetch_rest()         RestDescriptor  → GET {base}/{table}?select&order&limit
#   fetch_sheet()        SheetArtifact   → CSV export → parse_csv() grid
#
# Results are all-or-nothing: any failure raises ExecutionError and no
# partial row set is ever returned.
# =============================================================================

from __future__ import annotations

import csv
import io
import logging
import re
from typing import Any

import httpx

from app.agents.artifacts import RestDescriptor, SheetArtifact, SqlArtifact
from app.config import settings
from app.services.errors import ExecutionError
from app.services.sql_runner import SqlRunner

logger = logging.getLogger(__name__)

Rows = list[dict[str, Any]] | list[list[str]]

_SHEET_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


# ---------------------------------------------------------------------------
# Relational
# ---------------------------------------------------------------------------


async def run_sql(artifact: SqlArtifact, runner: SqlRunner) -> list[dict[str, Any]]:
    """Execute generated SQL as-is. Errors surface as ExecutionError."""
    return await runner.run(artifact.sql)


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


def build_rest_params(descriptor: RestDescriptor) -> dict[str, str]:
    """Query parameters for a descriptor, in select/order/limit order."""
    params = {"select": descriptor.select}
    if descriptor.order:
        params["order"] = descriptor.order
    params["limit"] = str(descriptor.limit or settings.rest_default_limit)
    return params


async def fetch_rest(
    descriptor: RestDescriptor,
    client: httpx.AsyncClient,
) -> list[dict[str, Any]]:
    """
    Issue the REST fetch described by `descriptor`.

    Raises:
        ExecutionError: missing credential, transport failure, non-2xx
            status, or a body that is not a JSON array of records.
    """
    if not settings.rest_api_key:
        raise ExecutionError(
            detail="REST_API_KEY is required for structured queries",
            stage="executing",
        )

    url = f"{settings.rest_base_url.rstrip('/')}/{descriptor.table}"
    params = build_rest_params(descriptor)
    logger.info("Executing REST query: %s %s", url, params)

    try:
        response = await client.get(
            url,
            params=params,
            headers={"apikey": settings.rest_api_key},
        )
    except httpx.HTTPError as e:
        logger.error("REST request failed: %s", e)
        raise ExecutionError(
            detail=f"REST request failed: {type(e).__name__}",
            stage="executing",
        ) from e

    if response.is_error:
        logger.error(
            "REST backend error: %s %s",
            response.status_code, response.text[:200],
        )
        raise ExecutionError(
            detail=f"REST query failed: {response.status_code}",
            stage="executing",
        )

    try:
        data = response.json()
    except ValueError as e:
        raise ExecutionError(
            detail="REST backend returned invalid JSON",
            stage="executing",
        ) from e

    if not isinstance(data, list):
        raise ExecutionError(
            detail="REST backend did not return an array",
            stage="executing",
        )

    if not all(isinstance(row, dict) for row in data):
        raise ExecutionError(
            detail="REST backend returned non-record rows",
            stage="executing",
        )

    logger.info("REST query returned %d rows", len(data))
    return data


# ---------------------------------------------------------------------------
# Spreadsheet Export
# ---------------------------------------------------------------------------


def is_valid_sheet_id(sheet_id: str) -> bool:
    return bool(sheet_id) and _SHEET_ID_RE.match(sheet_id) is not None


async def fetch_sheet(
    artifact: SheetArtifact,
    client: httpx.AsyncClient,
) -> list[list[str]]:
    """
    Download a spreadsheet as CSV and parse it into a grid.

    The id is checked before it is interpolated into the export URL.

    Raises:
        ExecutionError: invalid id, transport failure or non-2xx status.
    """
    if not is_valid_sheet_id(artifact.sheet_id):
        raise ExecutionError(
            detail="Invalid spreadsheet ID format",
            stage="executing",
        )

    url = settings.sheet_export_url_template.format(sheet_id=artifact.sheet_id)
    logger.info("Fetching spreadsheet export %s", artifact.sheet_id)

    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.error("Spreadsheet fetch failed: %s", e)
        raise ExecutionError(
            detail=f"Failed to fetch sheet: {type(e).__name__}",
            stage="executing",
        ) from e

    if response.is_error:
        raise ExecutionError(
            detail=(
                f"Failed to fetch sheet: {response.status_code} "
                f"{response.reason_phrase}"
            ),
            stage="executing",
        )

    rows = parse_csv(response.text)
    logger.info("Spreadsheet export parsed: %d rows", len(rows))
    return rows


def parse_csv(text: str) -> list[list[str]]:
    """
    Parse comma-separated text into a list of rows.

    Quoting follows RFC 4180: a quoted field may contain commas, and a
    doubled quote inside it is a literal quote. Cells are whitespace-trimmed
    and blank lines are skipped.

        '"a,b",c'   → [["a,b", "c"]]
        'x,"y""z"'  → [["x", 'y"z']]
    """
    reader = csv.reader(io.StringIO(text))
    rows = []
    for row in reader:
        cells = [cell.strip() for cell in row]
        if any(cells):
            rows.append(cells)
    return rows
