"""User model and role definitions."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from schoolmed.db.base import Base
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin


class UserRole(str, enum.Enum):
    """Supported user roles."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SCHOOLNURSE = "SCHOOLNURSE"
    PARENT = "PARENT"
    STUDENT = "STUDENT"


CLINICAL_ROLES = frozenset({UserRole.SCHOOLNURSE, UserRole.ADMIN, UserRole.MANAGER})


class User(TimestampMixin, SoftDeleteMixin, Base):
    """Anyone the scheduling core notifies or checks permissions for."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    student_code: Mapped[str | None] = mapped_column(String(50))
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
