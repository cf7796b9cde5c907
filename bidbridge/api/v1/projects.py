import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.api.deps import get_current_user, get_db, is_admin, require_role
from bidbridge.api.v1.quotes import QuoteResponse
from bidbridge.common.enums import ProjectStatus, UserRole
from bidbridge.common.pagination import PaginatedResponse, PaginationParams, paginate
from bidbridge.core.engagement.schemas import ProjectCreate, ProjectUpdate
from bidbridge.core.engagement.state_machine import EngagementStateMachine
from bidbridge.db.models.project import Project
from bidbridge.db.models.user import User

router = APIRouter(prefix="/projects", tags=["Projects"])

state_machine = EngagementStateMachine()


# ---------- Schemas ----------


class ProjectResponse(BaseModel):
    id: uuid.UUID
    poster_id: uuid.UUID
    title: str
    description: str | None
    budget: Decimal | None
    deadline: str | None
    status: str
    quote_count: int
    assigned_provider_id: uuid.UUID | None
    approved_quote_id: uuid.UUID | None
    approved_amount: Decimal | None
    created_at: str

    model_config = {"from_attributes": True}

    @classmethod
    def from_orm_instance(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            poster_id=project.poster_id,
            title=project.title,
            description=project.description,
            budget=project.budget,
            deadline=project.deadline.isoformat() if project.deadline else None,
            status=project.status,
            quote_count=project.quote_count,
            assigned_provider_id=project.assigned_provider_id,
            approved_quote_id=project.approved_quote_id,
            approved_amount=project.approved_amount,
            created_at=project.created_at.isoformat(),
        )


class ApprovalResponse(BaseModel):
    project: ProjectResponse
    quote: QuoteResponse
    rejected_quote_ids: list[uuid.UUID]


# ---------- Endpoints ----------


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreate,
    current_user: User = Depends(require_role(UserRole.POSTER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    project = await state_machine.create_project(db, current_user.id, body)
    return ProjectResponse.from_orm_instance(project)


@router.get("", response_model=PaginatedResponse[ProjectResponse])
async def list_projects(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    params: PaginationParams = Depends(),
    status: ProjectStatus | None = None,
):
    query = select(Project).where(Project.is_deleted.is_(False))

    # Providers browse open work; posters see their own projects
    if current_user.role == UserRole.PROVIDER.value:
        query = query.where(Project.status == ProjectStatus.OPEN.value)
    elif not is_admin(current_user):
        query = query.where(Project.poster_id == current_user.id)
    if status is not None:
        query = query.where(Project.status == status.value)

    query = query.order_by(Project.created_at.desc(), Project.id)
    items, total = await paginate(db, query, params)
    return PaginatedResponse[ProjectResponse](
        items=[ProjectResponse.from_orm_instance(p) for p in items],
        total=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await state_machine.get_project(db, project_id)
    return ProjectResponse.from_orm_instance(project)


@router.post("/{project_id}/quotes/{quote_id}/approve", response_model=ApprovalResponse)
async def approve_quote(
    project_id: uuid.UUID,
    quote_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await state_machine.approve(db, project_id, quote_id, current_user.id)
    return ApprovalResponse(
        project=ProjectResponse.from_orm_instance(result.project),
        quote=QuoteResponse.from_orm_instance(result.quote),
        rejected_quote_ids=result.rejected_quote_ids,
    )


@router.post("/{project_id}/cancel", response_model=ProjectResponse)
async def cancel_project(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await state_machine.cancel(db, project_id, current_user.id, is_admin=is_admin(current_user))
    return ProjectResponse.from_orm_instance(project)


@router.post("/{project_id}/complete", response_model=ProjectResponse)
async def complete_project(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await state_machine.complete(db, project_id, current_user.id, is_admin=is_admin(current_user))
    return ProjectResponse.from_orm_instance(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await state_machine.update_project(
        db, project_id, current_user.id, body, is_admin=is_admin(current_user)
    )
    return ProjectResponse.from_orm_instance(project)


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await state_machine.delete_project(db, project_id, current_user.id, is_admin=is_admin(current_user))
