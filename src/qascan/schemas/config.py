"""Runtime configuration schema: built once at process start and injected."""

from pydantic import BaseModel, field_validator

PIPELINE_SECTIONS = ("capture", "audit", "tech", "vision", "explanations", "summary")


class Secrets(BaseModel):
    """Credentials for downstream services. Blank means not configured."""

    gemini_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    pagespeed_api_key: str = ""
    whatcms_api_key: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def strip_value(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else ("" if v is None else v)


class AiDefaults(BaseModel):
    """Default AI provider and per-provider model overrides."""

    provider: str = ""
    models: dict[str, str] = {}


class PipelineSettings(BaseModel):
    """Which sections decide the terminal status, and fan-out bounds."""

    # Sections whose failure fails the whole scan. Everything else is best-effort.
    required_sections: list[str] = ["capture", "audit"]

    accessibility_issue_cap: int = 10
    performance_opportunity_cap: int = 3
    non_perfect_performance_cap: int = 5
    seo_audit_cap: int = 3
    best_practices_audit_cap: int = 3
    vision_suggestion_cap: int = 10
    explanation_concurrency: int = 8

    @field_validator("required_sections")
    @classmethod
    def check_sections(cls, v: list[str]) -> list[str]:
        unknown = [s for s in v if s not in PIPELINE_SECTIONS]
        if unknown:
            raise ValueError(
                f"Unknown pipeline section(s) {unknown}; expected any of {list(PIPELINE_SECTIONS)}"
            )
        return v


class Timeouts(BaseModel):
    """Per-call bounds in seconds. ``task`` bounds a whole pipeline run."""

    capture_navigation: float = 120.0
    capture: float = 180.0
    audit: float = 90.0
    tech_detection: float = 20.0
    vision: float = 120.0
    llm_text: float = 60.0
    summary: float = 90.0
    task: float = 540.0


class StorageSettings(BaseModel):
    data_dir: str = "./data"


class QueueSettings(BaseModel):
    """Celery broker and routing for scan tasks."""

    broker_url: str = "redis://localhost:6379/0"
    # Empty: task results are not stored.
    result_backend: str = ""
    queue_name: str = "scan.pipeline"
    # Run tasks in the calling process (tests, local development).
    always_eager: bool = False


class ApiSettings(BaseModel):
    # Static bearer token for the intake API; empty disables the check.
    api_token: str = ""
    host: str = "127.0.0.1"
    port: int = 8080


class RuntimeConfig(BaseModel):
    """Top-level configuration, loaded from YAML and overlaid with environment."""

    secrets: Secrets = Secrets()
    ai_defaults: AiDefaults = AiDefaults()
    pipeline: PipelineSettings = PipelineSettings()
    timeouts: Timeouts = Timeouts()
    storage: StorageSettings = StorageSettings()
    queue: QueueSettings = QueueSettings()
    api: ApiSettings = ApiSettings()
