"""Novu workflow trigger client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from eleva.config import Settings
from eleva.errors import NotificationError

logger = logging.getLogger(__name__)


class NovuClient:
    """Triggers notification workflows.

    Every trigger carries a ``transactionId``; Novu drops a second trigger with
    the same id, which backs up the database stage markers.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.novu.co",
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"ApiKey {secret_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> NovuClient:
        settings.require("novu_secret_key")
        return cls(settings.novu_secret_key, settings.novu_api_url, **kwargs)  # type: ignore[arg-type]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def trigger(
        self,
        workflow_id: str,
        *,
        subscriber_id: str,
        payload: dict[str, Any],
        transaction_id: str,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> str | None:
        to: dict[str, Any] = {"subscriberId": subscriber_id}
        if email:
            to["email"] = email
        if first_name:
            to["firstName"] = first_name
        if last_name:
            to["lastName"] = last_name

        try:
            response = await self._client.post(
                "/v1/events/trigger",
                json={
                    "name": workflow_id,
                    "to": to,
                    "payload": payload,
                    "transactionId": transaction_id,
                },
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"Novu unreachable: {exc}") from exc

        if response.status_code == 409:
            # Same transactionId already accepted
            logger.info("Novu trigger %s already accepted", transaction_id)
            return transaction_id
        if response.status_code >= 400:
            raise NotificationError(
                f"Novu rejected {workflow_id}: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        data = response.json().get("data") or {}
        return data.get("transactionId", transaction_id)
