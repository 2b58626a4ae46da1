"""Authenticity checks for scheduler callbacks.

QStash signs every delivery with a HS256 JWT in the ``Upstash-Signature``
header. The token is signed with the current signing key, or with the next key
during rotation, and binds the destination URL (``sub``) and a SHA-256 digest
of the raw body (``body``). A shared ``x-api-key`` is accepted as a fallback for
manual invocations.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from eleva.config import Settings, get_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "upstash-signature"
API_KEY_HEADER = "x-api-key"
ISSUER = "Upstash"
CLOCK_SKEW_SECONDS = 60


def body_digest(body: bytes) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(body).digest()).decode().rstrip("=")


def verify_signature(
    token: str,
    *,
    url: str,
    body: bytes,
    signing_keys: list[str],
) -> dict[str, Any] | None:
    """Return the verified claims, or None when no key validates the token."""
    for key in signing_keys:
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["HS256"],
                issuer=ISSUER,
                subject=url,
                options={"leeway": CLOCK_SKEW_SECONDS, "verify_aud": False},
            )
        except JWTError as exc:
            logger.debug("Signature rejected with one signing key: %s", exc)
            continue
        if str(claims.get("body", "")).rstrip("=") != body_digest(body):
            logger.warning("Scheduler signature body digest mismatch for %s", url)
            return None
        return claims
    return None


def _expected_url(request: Request, settings: Settings) -> str:
    if settings.base_url:
        return f"{settings.base_url.rstrip('/')}{request.url.path}"
    return str(request.url)


async def verify_scheduler_request(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> str:
    """FastAPI dependency; returns the authentication method that succeeded."""
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key and settings.cron_api_key and hmac.compare_digest(api_key, settings.cron_api_key):
        return "api-key"

    token = request.headers.get(SIGNATURE_HEADER)
    keys = [k for k in (settings.qstash_current_signing_key, settings.qstash_next_signing_key) if k]
    if token and keys:
        body = await request.body()
        claims = verify_signature(
            token, url=_expected_url(request, settings), body=body, signing_keys=keys
        )
        if claims is not None:
            return "signature"

    logger.warning("Unauthorized scheduler callback to %s", request.url.path)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
