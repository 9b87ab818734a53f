import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel import col, or_, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.models.course import Course, CourseAccess
from billing.models.user_balance import UserBalance

logger = logging.getLogger(__name__)


class CourseAccessRepository:
    """Data access layer for the course catalog view, course access rights and user balances."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Course ====================

    async def get_course(self, course_id: str) -> Course | None:
        return await self.db.get(Course, course_id)

    async def list_courses(self) -> list[Course]:
        stmt = select(Course).order_by(col(Course.order))
        result = await self.db.exec(stmt)
        return list(result.all())

    # ==================== CourseAccess ====================

    async def get_access(self, user_id: str, course_id: str) -> CourseAccess | None:
        stmt = select(CourseAccess).where(CourseAccess.user_id == user_id, CourseAccess.course_id == course_id)
        result = await self.db.exec(stmt)
        return result.first()

    async def upsert_access(self, user_id: str, course_id: str, purchase_id: UUID | None) -> CourseAccess:
        """Grant lifetime access, extending an existing (possibly expiring) row to lifetime.

        This function does NOT commit the transaction, but it does flush the session.
        """
        access = await self.get_access(user_id, course_id)
        if access is None:
            access = CourseAccess(user_id=user_id, course_id=course_id, purchase_id=purchase_id, expires_at=None)
        else:
            access.purchase_id = purchase_id
            access.expires_at = None
            access.updated_at = datetime.now(timezone.utc)
        self.db.add(access)
        await self.db.flush()
        await self.db.refresh(access)
        logger.info(f"Granted course access: user_id={user_id}, course_id={course_id}")
        return access

    async def list_active_accesses(self, user_id: str, now: datetime) -> list[tuple[CourseAccess, Course]]:
        """Unexpired accesses of a user joined with their course, newest first."""
        stmt = (
            select(CourseAccess, Course)
            .join(Course, col(Course.id) == col(CourseAccess.course_id))
            .where(
                CourseAccess.user_id == user_id,
                or_(col(CourseAccess.expires_at).is_(None), col(CourseAccess.expires_at) >= now),
            )
            .order_by(col(CourseAccess.created_at).desc())
        )
        result = await self.db.exec(stmt)
        return [(access, course) for access, course in result.all()]

    # ==================== UserBalance ====================

    async def get_balance(self, user_id: str) -> UserBalance | None:
        return await self.db.get(UserBalance, user_id)

    async def increment_balance(self, user_id: str, roadmap_generations: int = 0, ai_credits: int = 0) -> UserBalance:
        """Atomically add to a user's counters, creating the row on first use.

        This function does NOT commit the transaction, but it does flush the session.
        """
        stmt = (
            update(UserBalance)
            .where(col(UserBalance.user_id) == user_id)
            .values(
                roadmap_generations=col(UserBalance.roadmap_generations) + roadmap_generations,
                ai_credits=col(UserBalance.ai_credits) + ai_credits,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.exec(stmt)  # type: ignore[call-overload]
        if result.rowcount == 0:
            self.db.add(UserBalance(user_id=user_id, roadmap_generations=roadmap_generations, ai_credits=ai_credits))
            await self.db.flush()
        balance = await self.db.get(UserBalance, user_id, populate_existing=True)
        assert balance is not None
        return balance
