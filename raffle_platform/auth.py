"""
auth.py - Admin API key check.

Admin routes (manual draws, reconciliation) require the X-API-Key header to
match the configured admin key. Player routes take the wallet explicitly.
"""

import hmac
import logging

from fastapi import HTTPException

from raffle_platform.config import ADMIN_KEY

logger = logging.getLogger("auth")


class AdminAuth:

    def __init__(self, admin_key: str = ADMIN_KEY):
        if not admin_key:
            raise ValueError("An admin key is required")
        self._admin_key = admin_key

    def is_admin(self, api_key: str) -> bool:
        if not api_key:
            return False
        return hmac.compare_digest(api_key.encode("utf-8"), self._admin_key.encode("utf-8"))

    def require_admin(self, api_key: str):
        if not self.is_admin(api_key):
            logger.warning("Rejected admin request with %s key", "bad" if api_key else "no")
            raise HTTPException(status_code=403, detail="Admin access required")
