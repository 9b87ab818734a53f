from .course_access import CourseAccessRepository
from .payment import PaymentRepository
from .subscription import SubscriptionRepository

__all__ = [
    "CourseAccessRepository",
    "PaymentRepository",
    "SubscriptionRepository",
]
