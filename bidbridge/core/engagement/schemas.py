import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote


class ProjectCreate(BaseModel):
    title: str = Field(max_length=500)
    description: str | None = None
    budget: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    deadline: datetime | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


class ProjectUpdate(BaseModel):
    """Editable details only; status moves through cancel/complete/approve."""

    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    budget: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    deadline: datetime | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


class ApprovalResult(BaseModel):
    """Outcome of one approval: the assigned project, the winning quote and the quotes it displaced."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    project: Project
    quote: Quote
    rejected_quote_ids: list[uuid.UUID] = Field(default_factory=list)
