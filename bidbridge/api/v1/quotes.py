import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.api.deps import get_current_user, get_db, require_role
from bidbridge.common.enums import QuoteStatus, UserRole
from bidbridge.core.quotes.ledger import QuoteLedger
from bidbridge.core.quotes.schemas import QuoteInput, QuotePatch
from bidbridge.db.models.quote import Quote
from bidbridge.db.models.user import User

router = APIRouter(tags=["Quotes"])

ledger = QuoteLedger()


# ---------- Schemas ----------


class QuoteResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    provider_id: uuid.UUID
    amount: Decimal
    timeline_days: int | None
    description: str
    attachments: list[dict]
    status: str
    sequence: int
    created_at: str
    approved_at: str | None = None
    rejected_at: str | None = None
    withdrawn_at: str | None = None

    @classmethod
    def from_orm_instance(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            id=quote.id,
            project_id=quote.project_id,
            provider_id=quote.provider_id,
            amount=quote.amount,
            timeline_days=quote.timeline_days,
            description=quote.description,
            attachments=quote.attachments or [],
            status=quote.status,
            sequence=quote.sequence,
            created_at=quote.created_at.isoformat(),
            approved_at=quote.approved_at.isoformat() if quote.approved_at else None,
            rejected_at=quote.rejected_at.isoformat() if quote.rejected_at else None,
            withdrawn_at=quote.withdrawn_at.isoformat() if quote.withdrawn_at else None,
        )


# ---------- Endpoints ----------


@router.post("/projects/{project_id}/quotes", response_model=QuoteResponse, status_code=201)
async def submit_quote(
    project_id: uuid.UUID,
    body: QuoteInput,
    current_user: User = Depends(require_role(UserRole.PROVIDER)),
    db: AsyncSession = Depends(get_db),
):
    quote = await ledger.submit(db, project_id, current_user.id, body)
    return QuoteResponse.from_orm_instance(quote)


@router.get("/projects/{project_id}/quotes", response_model=list[QuoteResponse])
async def list_project_quotes(
    project_id: uuid.UUID,
    status: QuoteStatus | None = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quotes = await ledger.list_for_project(db, project_id, current_user.id, status=status)
    return [QuoteResponse.from_orm_instance(q) for q in quotes]


@router.get("/quotes/mine", response_model=list[QuoteResponse])
async def list_my_quotes(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quotes = await ledger.list_for_provider(db, current_user.id, current_user.id)
    return [QuoteResponse.from_orm_instance(q) for q in quotes]


@router.get("/quotes/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quote = await ledger.get(db, quote_id, current_user.id)
    return QuoteResponse.from_orm_instance(quote)


@router.patch("/quotes/{quote_id}", response_model=QuoteResponse)
async def update_quote(
    quote_id: uuid.UUID,
    body: QuotePatch,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quote = await ledger.update(db, quote_id, current_user.id, body)
    return QuoteResponse.from_orm_instance(quote)


@router.post("/quotes/{quote_id}/withdraw", response_model=QuoteResponse)
async def withdraw_quote(
    quote_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quote = await ledger.withdraw(db, quote_id, current_user.id)
    return QuoteResponse.from_orm_instance(quote)
