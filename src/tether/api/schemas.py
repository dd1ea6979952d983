"""
API schemas: request bodies, responses and the RFC 7807 error envelope.

Every non-2xx response is a :class:`ProblemDetail`.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from tether.fiscal.contingency import ContingencyRecord, ContingencyStatus, ContingencyType


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs»."""

    type: str = Field(default="about:blank", description="Error type URI")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Human-readable explanation")
    instance: str = Field(default="", description="URI of the failing request")
    category: str | None = Field(default=None, description="tether error category")
    provider: str | None = Field(default=None, description="Integration that failed, when known")


# ── Fiscal contingency ───────────────────────────────────────────────────


class EnableContingencyRequest(BaseModel):
    contingency_type: ContingencyType = Field(description="Alternate issuance path")
    reason: str = Field(min_length=1, description="Why contingency is being entered")


class ContingencyRecordSchema(BaseModel):
    contingency_type: ContingencyType
    reason: str
    started_at: datetime
    ended_at: datetime | None = None

    @classmethod
    def from_record(cls, record: ContingencyRecord) -> ContingencyRecordSchema:
        return cls(
            contingency_type=record.contingency_type,
            reason=record.reason,
            started_at=record.started_at,
            ended_at=record.ended_at,
        )


class ContingencyStatusResponse(BaseModel):
    """Current contingency state of one owner."""

    owner_id: str
    active: bool
    contingency_type: ContingencyType | None = None
    reason: str | None = None
    started_at: datetime | None = None
    changed: bool | None = Field(
        default=None,
        description="Whether the request changed state (None for reads)",
    )
    history: list[ContingencyRecordSchema] = Field(default_factory=list)

    @classmethod
    def from_status(
        cls,
        status: ContingencyStatus,
        *,
        changed: bool | None = None,
        history: list[ContingencyRecord] | None = None,
    ) -> ContingencyStatusResponse:
        return cls(
            owner_id=status.owner_id,
            active=status.active,
            contingency_type=status.contingency_type,
            reason=status.reason,
            started_at=status.started_at,
            changed=changed,
            history=[ContingencyRecordSchema.from_record(r) for r in history or []],
        )


# ── Webhooks ─────────────────────────────────────────────────────────────


class WebhookAck(BaseModel):
    received: bool = True
    event: str
    action: str


__all__ = [
    "ProblemDetail",
    "EnableContingencyRequest",
    "ContingencyRecordSchema",
    "ContingencyStatusResponse",
    "WebhookAck",
]
