"""
Pre-shared key authentication for receiver endpoints.
"""

import secrets

from fastapi import HTTPException, Request
from loguru import logger


async def verify_key(request: Request) -> None:
    """
    Require the Authorization header to equal the configured key.

    The header carries the raw key, with no scheme prefix.
    """
    settings = request.app.state.settings
    if not settings.receiver_key:
        raise HTTPException(status_code=500, detail="Passkey not configured")

    supplied = request.headers.get("Authorization")
    if supplied is not None and secrets.compare_digest(
        supplied.encode("utf-8"), settings.receiver_key.encode("utf-8")
    ):
        return

    logger.warning(f"Rejected unauthorized {request.method} from {request.client.host if request.client else '?'}")
    raise HTTPException(status_code=401, detail="Missing Or Invalid Token")
