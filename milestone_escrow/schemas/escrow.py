"""Pydantic v2 schemas for Escrow endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MilestoneInput(BaseModel):
    description: str
    weight: int


class EscrowCreate(BaseModel):
    """Operator opens an escrow.

    Milestones may be given as a list of ``{"description", "weight"}`` objects,
    or as parallel ``descriptions`` / ``weights`` arrays. Business rules (weights
    positive and summing to 100, non-empty title) are enforced by the store so
    that every entry point reports the same constraint names.
    """
    title: str
    beneficiary: str
    depositor: str
    total_amount: int
    milestones: list[MilestoneInput] | None = None
    descriptions: list[str] | None = None
    weights: list[int] | None = None


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str
    weight: int
    completed: bool
    completed_at: datetime | None


class EscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    beneficiary: str
    depositor: str
    total_amount: int
    status: str
    funded: bool
    completed: bool
    refunded: bool
    progress: int
    milestones: list[MilestoneResponse]
    created_at: datetime
    funded_at: datetime | None
    completed_at: datetime | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class EscrowPage(BaseModel):
    total: int
    offset: int
    items: list[EscrowResponse]


class ProgressResponse(BaseModel):
    escrow_id: int
    progress: int = Field(..., ge=0, le=100)
    milestone_count: int
    all_milestones_completed: bool


class EventResponse(BaseModel):
    sequence: int
    event: str
    escrow_id: int
    timestamp: datetime
    details: dict
