from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from bidbridge.common.enums import UserRole
from bidbridge.db.base import BaseModel


class User(BaseModel):
    """Directory mirror of identity-provider accounts, read for display data."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False, default=UserRole.PROVIDER)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
