"""Ingest settings: YAML loader, Pydantic models, env overrides and hashing."""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ingest.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "OPENSEARCH_ENDPOINT": ("index", "endpoint"),
    "OPENSEARCH_USER": ("index", "username"),
    "OPENSEARCH_PASSWORD": ("index", "password"),
    "S2_API_KEY": ("semanticscholar", "api_key"),
    "OPENALEX_MAILTO": ("openalex", "mailto"),
    "NCBI_EMAIL": ("pubmed", "email"),
    "NCBI_API_KEY": ("pubmed", "api_key"),
    "INGEST_DB_PATH": ("store", "path"),
}

_SECRET_FIELDS = {"password", "api_key"}


# ── Sections ─────────────────────────────────────────────────────────


class IndexSettings(BaseModel):
    """Bulk document index (OpenSearch-compatible REST API)."""

    endpoint: str = ""
    index: str = "papers"
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class OpenAlexSettings(BaseModel):
    """Cursor works listing and citation lookup."""

    mailto: Optional[str] = None
    per_page: int = Field(default=200, ge=1, le=200)
    page_delay_seconds: float = Field(default=0.12, ge=0)
    arxiv_source_id: str = "S4306400194"
    start_cursor: str = "*"
    timeout_seconds: float = Field(default=30.0, gt=0)
    enrich_batch_size: int = Field(default=50, ge=1, le=50)
    enrich_delay_seconds: float = Field(default=0.1, ge=0)
    enrich_cooldown_seconds: float = Field(default=10.0, ge=0)


class SemanticScholarSettings(BaseModel):
    """Relevance search API and bulk datasets."""

    api_key: Optional[str] = None
    dataset: str = "papers"
    arxiv_only: bool = True
    start_file: int = Field(default=0, ge=0)


class PubMedSettings(BaseModel):
    """NCBI E-utilities identification."""

    email: Optional[str] = None
    api_key: Optional[str] = None
    tool: str = "paper-ingest"


class RetrySettings(BaseModel):
    """Shared retry ceiling and backoff steps."""

    max_attempts: int = Field(default=5, ge=1)
    rate_limit_step_seconds: float = Field(default=5.0, ge=0)
    error_delay_seconds: float = Field(default=2.0, ge=0)


class StoreSettings(BaseModel):
    """Relational store used by the enrichment job."""

    path: str = "data/papers.db"


# ── Top-level ────────────────────────────────────────────────────────


class IngestSettings(BaseModel):
    """All settings for one ingestion or enrichment run."""

    batch_size: int = Field(default=500, ge=1)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    index: IndexSettings = Field(default_factory=IndexSettings)
    openalex: OpenAlexSettings = Field(default_factory=OpenAlexSettings)
    semanticscholar: SemanticScholarSettings = Field(default_factory=SemanticScholarSettings)
    pubmed: PubMedSettings = Field(default_factory=PubMedSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    def settings_hash(self) -> str:
        """SHA-256 of the non-secret settings (canonical JSON)."""
        data = self.model_dump()
        for section in data.values():
            if isinstance(section, dict):
                for key in _SECRET_FIELDS & section.keys():
                    section[key] = None
        return _canonical_hash(data)


# ── Loading ──────────────────────────────────────────────────────────


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> IngestSettings:
    """Load settings from YAML (if given and present) plus env overrides."""
    raw: dict = {}
    if path is not None:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"{path}: top level must be a mapping")
        else:
            logger.warning("Settings file %s not found, using defaults", path)

    env = os.environ if environ is None else environ
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            raw.setdefault(section, {})[field] = value

    try:
        return IngestSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc


def require_index_endpoint(settings: IngestSettings) -> str:
    if not settings.index.endpoint:
        raise ConfigError("OPENSEARCH_ENDPOINT is required (settings index.endpoint)")
    return settings.index.endpoint


def require_s2_api_key(settings: IngestSettings) -> str:
    if not settings.semanticscholar.api_key:
        raise ConfigError("S2_API_KEY is required (settings semanticscholar.api_key)")
    return settings.semanticscholar.api_key


# ── Helpers ──────────────────────────────────────────────────────────


def _canonical_hash(data: dict) -> str:
    """Deterministic SHA-256 hash of a dict via sorted-key JSON."""
    blob = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()
