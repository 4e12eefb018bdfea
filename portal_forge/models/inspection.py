"""Post-deployment inspection: health, usage and maturity assessment."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from portal_forge.models.maturity import MaturityLevel


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class HealthCheck(BaseModel):
    name: str                               # e.g., "deployment", "usage"
    status: CheckStatus
    message: str


class HealthCheckResult(BaseModel):
    artifact_name: str
    status: HealthStatus
    checks: List[HealthCheck] = []
    recommendations: List[str] = []
    checked_at: datetime
    next_check_at: Optional[datetime] = None


class FailureReason(BaseModel):
    reason: str
    count: int
    percentage: float


class UsageMetrics(BaseModel):
    artifact_name: str
    total_executions: int = 0
    success_rate: float = Field(ge=0.0, le=1.0, default=0.0)
    average_duration_seconds: float = 0.0
    failure_reasons: List[FailureReason] = []
    last_used: Optional[datetime] = None
    top_users: List[str] = []


class ExecutionSample(BaseModel):
    """One recorded template execution."""

    artifact_name: str
    success: bool
    duration_seconds: float
    user: Optional[str] = None
    failure_reason: Optional[str] = None
    at: datetime


class OverallHealthStatus(BaseModel):
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    failed: int = 0
    results: List[HealthCheckResult] = []


class MaturityAssessment(BaseModel):
    capability_id: str
    current_level: MaturityLevel
    next_level: Optional[MaturityLevel] = None
    readiness_score: float = Field(ge=0.0, le=100.0, default=0.0)
    covered_capabilities: List[str] = []
    missing_capabilities: List[str] = []
    recommendations: List[str] = []
