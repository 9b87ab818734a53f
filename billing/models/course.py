"""Course catalog reference and per-user course access rights."""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Course(SQLModel, table=True):
    """Read-only view of the course catalog (authored by the content subsystem)."""

    __tablename__ = "courses"  # type: ignore

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    slug: str = Field(unique=True, index=True)
    title: str
    order: int = Field(default=0, description="Catalog ordering")


class CourseAccess(SQLModel, table=True):
    """Durable access right to one course, unique per (user, course)."""

    __tablename__ = "course_accesses"  # type: ignore
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_accesses_user_course"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: str = Field(index=True)
    course_id: str = Field(index=True)
    purchase_id: UUID | None = Field(default=None, description="Purchase that granted the access (back-reference)")
    expires_at: datetime | None = Field(
        default=None,
        sa_column=Column(TIMESTAMP(timezone=True), nullable=True),
        description="Expiration time (null = lifetime)",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, onupdate=lambda: datetime.now(timezone.utc)),
    )
