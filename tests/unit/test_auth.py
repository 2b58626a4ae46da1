"""Tests for eleva.dispatch.auth."""

from __future__ import annotations

import time

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from jose import jwt

from eleva.dispatch.auth import body_digest, verify_signature

CURRENT_KEY = "sig_current"
NEXT_KEY = "sig_next"
URL = "https://app.eleva.test/api/cron/keep-alive"


def _token(key: str, *, url: str = URL, body: bytes = b"", issuer: str = "Upstash", exp_offset: int = 300):
    now = int(time.time())
    return jwt.encode(
        {
            "iss": issuer,
            "sub": url,
            "iat": now,
            "nbf": now,
            "exp": now + exp_offset,
            "jti": "msg_1",
            "body": body_digest(body),
        },
        key,
        algorithm="HS256",
    )


# ── verify_signature ──────────────────────────────────────────────────────────


def test_body_digest_is_unpadded_base64url():
    assert body_digest(b"") == "47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU"


def test_current_key_accepted():
    body = b'{"job":"keepAlive"}'
    claims = verify_signature(_token(CURRENT_KEY, body=body), url=URL, body=body, signing_keys=[CURRENT_KEY, NEXT_KEY])
    assert claims["sub"] == URL


def test_next_key_accepted_during_rotation():
    claims = verify_signature(_token(NEXT_KEY), url=URL, body=b"", signing_keys=[CURRENT_KEY, NEXT_KEY])
    assert claims is not None


@pytest.mark.parametrize(
    "token_kwargs, url, body",
    [
        ({"body": b"original"}, URL, b"tampered"),
        ({}, "https://app.eleva.test/api/cron/other", b""),
        ({"issuer": "Someone"}, URL, b""),
        ({"exp_offset": -3600}, URL, b""),
    ],
)
def test_invalid_tokens_rejected(token_kwargs, url, body):
    token = _token(CURRENT_KEY, **token_kwargs)
    assert verify_signature(token, url=url, body=body, signing_keys=[CURRENT_KEY]) is None


def test_unknown_key_rejected():
    assert verify_signature(_token("other"), url=URL, body=b"", signing_keys=[CURRENT_KEY]) is None


# ── FastAPI dependency ────────────────────────────────────────────────────────


def _app(**settings_kwargs):
    from fastapi import Depends

    from eleva.config import Settings, get_settings
    from eleva.dispatch.auth import verify_scheduler_request

    app = FastAPI()

    @app.post("/api/cron/keep-alive")
    async def endpoint(request: Request, method: str = Depends(verify_scheduler_request)):
        return {"method": method, "body": (await request.body()).decode()}

    settings = Settings(
        _env_file=None,
        base_url="https://app.eleva.test",
        qstash_current_signing_key=CURRENT_KEY,
        qstash_next_signing_key=NEXT_KEY,
        **settings_kwargs,
    )
    app.dependency_overrides[get_settings] = lambda: settings
    return app


def test_dependency_accepts_signed_request():
    body = b'{"job":"keepAlive"}'
    client = TestClient(_app())
    resp = client.post(
        "/api/cron/keep-alive", content=body, headers={"Upstash-Signature": _token(CURRENT_KEY, body=body)}
    )
    assert resp.status_code == 200
    assert resp.json() == {"method": "signature", "body": '{"job":"keepAlive"}'}


def test_dependency_accepts_api_key():
    client = TestClient(_app(cron_api_key="cron-key"))
    resp = client.post("/api/cron/keep-alive", headers={"x-api-key": "cron-key"})
    assert resp.status_code == 200
    assert resp.json()["method"] == "api-key"


def test_dependency_rejects_wrong_api_key():
    client = TestClient(_app(cron_api_key="cron-key"))
    assert client.post("/api/cron/keep-alive", headers={"x-api-key": "nope"}).status_code == 401


def test_dependency_rejects_unsigned_request():
    client = TestClient(_app(cron_api_key="cron-key"))
    assert client.post("/api/cron/keep-alive").status_code == 401


def test_dependency_rejects_signature_for_other_body():
    client = TestClient(_app())
    resp = client.post(
        "/api/cron/keep-alive",
        content=b'{"job":"keepAlive","as_of":"2020-01-01T00:00:00Z"}',
        headers={"Upstash-Signature": _token(CURRENT_KEY, body=b'{"job":"keepAlive"}')},
    )
    assert resp.status_code == 401
