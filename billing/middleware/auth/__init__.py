"""Request identity dependencies.

Session management lives upstream: the gateway in front of this service
authenticates the user and forwards the id in ``X-User-Id``. Admin endpoints
are guarded by a shared secret in ``X-Admin-Secret``.
"""

import hmac
import logging

from fastapi import Header

from billing.common.code import ErrCode, handle_auth_error
from billing.configs import configs

logger = logging.getLogger(__name__)


async def get_current_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """Return the authenticated user id, or 401 if the gateway did not forward one."""
    if not x_user_id or not x_user_id.strip():
        raise handle_auth_error(ErrCode.AUTHENTICATION_REQUIRED.with_messages("Missing X-User-Id header"))
    return x_user_id.strip()


async def get_optional_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str | None:
    if not x_user_id or not x_user_id.strip():
        return None
    return x_user_id.strip()


async def require_admin(admin_secret: str = Header(default="", alias="X-Admin-Secret")) -> None:
    expected = configs.Admin.Secret
    if not expected or not hmac.compare_digest(admin_secret.encode(), expected.encode()):
        logger.warning("Invalid admin secret key provided")
        raise handle_auth_error(ErrCode.ADMIN_REQUIRED.with_messages("Invalid admin secret key"))


__all__ = ["get_current_user", "get_optional_user", "require_admin"]
