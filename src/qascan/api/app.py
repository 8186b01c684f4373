"""HTTP API: scan intake, report lookup and live report events."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sse_starlette.sse import EventSourceResponse

from qascan.schemas.config import RuntimeConfig
from qascan.schemas.task import ScanAccepted, ScanRequest
from qascan.services.intake import ScanDispatcher, submit_scan
from qascan.shared.errors import ConfigurationError, ScanValidationError
from qascan.shared.report_store import ReportStore

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


async def report_events(
    store: ReportStore,
    report_id: str,
    *,
    poll_interval: float = 1.0,
    max_duration: float = 900.0,
) -> AsyncIterator[dict]:
    """Yield the record each time it changes; stop once it is terminal.

    Events: ``report`` (full record JSON), then ``complete`` at a terminal
    status, or ``timeout`` / ``error`` if the stream has to give up.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_duration
    last_seen: int | None = None

    while True:
        record = await store.get(report_id)
        if record is None:
            yield {"event": "error", "data": json.dumps({"detail": "Report not found"})}
            return

        if record.updated_at != last_seen:
            last_seen = record.updated_at
            yield {"event": "report", "data": record.model_dump_json()}

        if record.status.is_terminal:
            yield {
                "event": "complete",
                "data": json.dumps({"report_id": report_id, "status": record.status.value}),
            }
            return

        if loop.time() >= deadline:
            yield {"event": "timeout", "data": json.dumps({"detail": "Connection timeout"})}
            return

        await asyncio.sleep(poll_interval)


def create_app(
    config: RuntimeConfig,
    store: ReportStore,
    dispatch: ScanDispatcher,
    *,
    event_poll_interval: float = 1.0,
) -> FastAPI:
    """Build the API. Accepted scans are handed to ``dispatch`` for a worker to run."""

    app = FastAPI(title="qascan", version="0.1.0")

    def require_token(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    ) -> None:
        expected = config.api.api_token
        if not expected:
            return
        if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
            logger.warning("Rejected scan request with missing or invalid bearer token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized: Missing or invalid token.",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "service": "qascan"}

    @app.post(
        "/api/scans",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=ScanAccepted,
        dependencies=[Depends(require_token)],
    )
    async def create_scan(body: ScanRequest) -> ScanAccepted:
        try:
            return await submit_scan(body, store, dispatch)
        except ScanValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except ConfigurationError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Server configuration error: {exc}",
            )

    @app.get("/api/reports/{report_id}")
    async def get_report(report_id: str) -> dict:
        record = await store.get(report_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
        return record.model_dump(mode="json")

    @app.get("/api/reports/{report_id}/events")
    async def stream_report(report_id: str) -> EventSourceResponse:
        if await store.get(report_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
        return EventSourceResponse(report_events(store, report_id, poll_interval=event_poll_interval))

    return app
