from datetime import datetime, timezone

from sqlalchemy import TIMESTAMP
from sqlmodel import Column, Field, SQLModel


class UserBalance(SQLModel, table=True):
    """Purchased consumable counters per user."""

    __tablename__ = "user_balances"  # type: ignore

    user_id: str = Field(primary_key=True)
    roadmap_generations: int = Field(default=0, description="Purchased roadmap generations (on top of the free one)")
    roadmap_generations_used: int = Field(default=0, description="Generations consumed, maintained by the roadmap subsystem")
    ai_credits: int = Field(default=0, description="Purchased AI credits")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, onupdate=lambda: datetime.now(timezone.utc)),
    )
