"""
Qrydex - Security Layer
Bearer-secret guard for the maintenance trigger endpoint.
"""
import secrets

from fastapi import HTTPException, Request

from qrydex.config import get_settings


def bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def require_cron_secret(request: Request) -> None:
    """Reject the request unless it carries `Authorization: Bearer <CRON_SECRET>`."""
    expected = getattr(request.app.state, "cron_secret", None) or get_settings().CRON_SECRET
    token = bearer_token(request)
    if not token or not secrets.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
