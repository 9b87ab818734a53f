from billing.models.course import Course, CourseAccess
from billing.models.payment import Payment, PaymentTransaction, Purchase
from billing.models.subscription import Subscription, SubscriptionPlan
from billing.models.user_balance import UserBalance

__all__ = [
    "Course",
    "CourseAccess",
    "Payment",
    "PaymentTransaction",
    "Purchase",
    "Subscription",
    "SubscriptionPlan",
    "UserBalance",
]
