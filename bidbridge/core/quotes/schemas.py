from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class Attachment(BaseModel):
    """File metadata returned by external storage; bytes never pass through the core."""

    name: str = Field(min_length=1, max_length=500)
    url: str = Field(min_length=1, max_length=2000)
    size: int = Field(ge=0)


class QuoteInput(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    timeline_days: int | None = Field(default=None, ge=0)
    description: str
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v


class QuotePatch(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    timeline_days: int | None = Field(default=None, ge=0)
    description: str | None = None
    # Appended to the existing list, never replacing it
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v
