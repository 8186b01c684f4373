"""Intake request/response and the internal task payload."""

from pydantic import BaseModel, Field

from qascan.schemas.report import now_ms


class ScanRequest(BaseModel):
    """Body of ``POST /api/scans``."""

    url: str = ""
    ai_provider: str | None = Field(default=None, alias="aiProvider")
    ai_model: str | None = Field(default=None, alias="aiModel")

    model_config = {"populate_by_name": True}


class ScanAccepted(BaseModel):
    """202 response for an accepted scan."""

    report_id: str
    status: str = "queued"
    url: str
    queued_at: int = Field(default_factory=now_ms)


class ScanTaskPayload(BaseModel):
    """Delivered at least once to the worker; handlers must tolerate duplicates."""

    report_id: str
    url_to_scan: str
    ai_provider: str | None = None
    ai_model: str | None = None
