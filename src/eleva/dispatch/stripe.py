"""Minimal Stripe REST client for Connect transfers and payouts."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from eleva.config import Settings
from eleva.errors import PaymentProviderError, StripeRequestError

logger = logging.getLogger(__name__)


def _form_encode(data: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested dicts into Stripe's ``metadata[key]`` form syntax."""
    flat: dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(_form_encode(value, name))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


class StripeClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com",
        *,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=(secret_key, ""),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> StripeClient:
        settings.require("stripe_secret_key")
        return cls(settings.stripe_secret_key, settings.stripe_api_url, **kwargs)  # type: ignore[arg-type]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        account: str | None = None,
    ) -> dict[str, Any]:
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        if account:
            headers["Stripe-Account"] = account
        try:
            response = await self._client.request(
                method, path, data=_form_encode(data) if data else None, headers=headers
            )
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Stripe unreachable: {exc}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise PaymentProviderError(
                f"Stripe error {response.status_code}", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            error = body.get("error") or {}
            raise StripeRequestError(
                error.get("message") or f"Stripe rejected request ({response.status_code})",
                code=error.get("code"),
                status_code=response.status_code,
            )
        return body

    async def create_transfer(
        self,
        *,
        amount: int,
        currency: str,
        destination: str,
        source_transaction: str | None,
        metadata: dict[str, str],
        description: str,
        idempotency_key: str,
    ) -> str:
        body = await self._request(
            "POST",
            "/v1/transfers",
            data={
                "amount": amount,
                "currency": currency,
                "destination": destination,
                "source_transaction": source_transaction,
                "description": description,
                "metadata": metadata,
            },
            idempotency_key=idempotency_key,
        )
        return body["id"]

    async def available_balance(self, account: str, currency: str) -> int:
        body = await self._request("GET", "/v1/balance", account=account)
        for entry in body.get("available", []):
            if entry.get("currency", "").lower() == currency.lower():
                return int(entry.get("amount", 0))
        return 0

    async def create_payout(
        self,
        *,
        account: str,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        description: str,
        idempotency_key: str,
    ) -> str:
        body = await self._request(
            "POST",
            "/v1/payouts",
            data={
                "amount": amount,
                "currency": currency,
                "description": description,
                "metadata": metadata,
            },
            idempotency_key=idempotency_key,
            account=account,
        )
        return body["id"]
