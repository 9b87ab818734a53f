from fastapi import APIRouter

from .admin import router as admin_router
from .checkout import router as checkout_router
from .webhooks import router as webhooks_router

v1_router = APIRouter(prefix="/v1")

v1_router.include_router(checkout_router, prefix="/checkout")
v1_router.include_router(webhooks_router, prefix="/webhooks")
v1_router.include_router(admin_router, prefix="/admin")

__all__ = ["v1_router"]
