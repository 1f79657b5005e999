"""Pydantic models for the SecOps repository scanner."""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Ordinal rank, higher is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class ScanStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED})


class IndexedFile(BaseModel):
    """A source file picked up by the file walker."""

    path: str = Field(description="Absolute path on disk")
    relative_path: str = Field(description="Path relative to the repository root")
    content: str
    size_bytes: int = Field(ge=0)


class RuleMatch(BaseModel):
    """One firing of a rule at one line of one file."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    title: str
    description: str
    severity: Severity
    owasp_category: str = Field(description="Full OWASP label, e.g. 'A05:2021 – Security Misconfiguration'")
    owasp_id: str = Field(description="Short OWASP code, e.g. 'A05'")
    file_path: str
    line_start: int = Field(ge=1)
    line_end: int = Field(ge=1)
    code_snippet: str = Field(description="Surrounding source lines (truncated)")

    @property
    def dedupe_key(self) -> tuple[str, str, int]:
        return (self.rule_id, self.file_path, self.line_start)


class EnrichedFinding(RuleMatch):
    """A rule match after AI review.

    Severity and OWASP fields hold the AI's classification when it answered.
    The ``ai_*`` text fields are absent when enrichment was skipped or failed.
    """

    ai_confirmed: bool = Field(default=False)
    ai_enriched: bool = Field(default=False, description="True when an AI verdict was applied")
    ai_explanation: Optional[str] = Field(default=None)
    ai_patch_suggestion: Optional[str] = Field(default=None)
    ai_impact_summary: Optional[str] = Field(default=None)

    @property
    def counts_toward_score(self) -> bool:
        """Everything except findings the AI explicitly dismissed."""
        return self.ai_confirmed or not self.ai_enriched


# Longest free-text field accepted from the model
MAX_AI_TEXT_CHARS = 2000

_OWASP_ID_RE = re.compile(r"A(\d{2})", re.IGNORECASE)


class AIVerdict(BaseModel):
    """Structured verdict returned by the language model.

    Every field is optional. Values that do not fit the expected shape raise
    a ValidationError so the caller can treat the reply as unparseable.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    confirmed: Optional[bool] = None
    owasp_category: Optional[str] = Field(default=None, alias="owaspCategory")
    owasp_id: Optional[str] = Field(default=None, alias="owaspId")
    severity: Optional[Severity] = None
    explanation: Optional[str] = None
    patch_suggestion: Optional[str] = Field(default=None, alias="patchSuggestion")
    impact_summary: Optional[str] = Field(default=None, alias="impactSummary")

    @field_validator("owasp_category", "explanation", "patch_suggestion", "impact_summary", mode="before")
    @classmethod
    def _clip_text(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("expected a string")
        value = value.strip()
        return value[:MAX_AI_TEXT_CHARS] or None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("owasp_id", mode="before")
    @classmethod
    def _normalize_owasp_id(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("expected a string")
        if not value.strip():
            return None
        match = _OWASP_ID_RE.match(value.strip())
        if not match:
            raise ValueError(f"not an OWASP code: {value!r}")
        return f"A{match.group(1)}"


class SeverityCounts(BaseModel):
    """Finding counts per severity. Every level is always present."""

    critical: int = Field(default=0, ge=0)
    high: int = Field(default=0, ge=0)
    medium: int = Field(default=0, ge=0)
    low: int = Field(default=0, ge=0)
    info: int = Field(default=0, ge=0)

    def get(self, severity: Severity) -> int:
        return getattr(self, severity.value)


class ScoreResult(BaseModel):
    score: int = Field(ge=0, le=100, description="Security score 0-100")
    counts: SeverityCounts = Field(default_factory=SeverityCounts)
    owasp_distribution: dict[str, int] = Field(default_factory=dict)


class ScanTarget(BaseModel):
    """What to scan: a remote repository or a local directory."""

    repo_url: Optional[str] = Field(default=None, description="URL of the git repository to scan")
    branch: str = Field(default="main", description="Branch to clone")
    path: Optional[str] = Field(default=None, description="Local directory to scan instead of cloning")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ScanTarget":
        if bool(self.repo_url) == bool(self.path):
            raise ValueError("provide exactly one of 'repo_url' or 'path'")
        return self

    @property
    def display_name(self) -> str:
        if self.repo_url:
            return f"{self.repo_url}@{self.branch}"
        return str(self.path)


class ScanRequest(BaseModel):
    """HTTP scan submission. Only remote repositories can be scanned over the API."""

    model_config = ConfigDict(extra="forbid")

    repo_url: str = Field(min_length=1, description="URL of the git repository to scan")
    branch: str = Field(default="main", description="Branch to clone")

    def to_target(self) -> ScanTarget:
        return ScanTarget(repo_url=self.repo_url, branch=self.branch)


class ScanReport(BaseModel):
    """Outcome of one scan execution, as handed to persistence."""

    scan_id: str
    target: ScanTarget
    status: ScanStatus
    score: Optional[int] = Field(default=None, ge=0, le=100)
    counts: SeverityCounts = Field(default_factory=SeverityCounts)
    owasp_distribution: dict[str, int] = Field(default_factory=dict)
    findings: list[EnrichedFinding] = Field(default_factory=list)
    files_scanned: int = Field(default=0, ge=0)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = Field(default=None, description="User-visible failure reason")


class ScanSubmitResponse(BaseModel):
    scan_id: str
    status: ScanStatus


class DemoAnalysisRequest(BaseModel):
    code: str = Field(default="", description="Code snippet to classify")


class DemoAnalysisResult(BaseModel):
    """Single-snippet classification used by the public demo."""

    security_score: int = Field(ge=0, le=100)
    owasp_mapping: str
    owasp_id: str
    severity: str
    explanation: str
    suggested_fix: str
    confirmed: bool
