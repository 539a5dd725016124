"""
CRM client: logs attempt outcomes against a prospect.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from redialer.crm.config import CrmConfig
from redialer.crm.status import CRM_STATUSES, DEFAULT_CRM_STATUS
from redialer.shared.logging import get_logger

logger = get_logger(__name__)


class CrmError(Exception):
    """Base exception for CRM errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CrmTransientError(CrmError):
    """Timeout, connection error, 5xx or 429."""


class CrmRequestError(CrmError):
    """CRM rejected the update."""


def _raise_if_error(response: httpx.Response) -> None:
    if response.status_code in (429,) or response.status_code >= 500:
        raise CrmTransientError(
            f"CRM returned {response.status_code}",
            error_code=f"HTTP_{response.status_code}",
            provider_response={"body": response.text},
        )
    if response.status_code >= 400:
        raise CrmRequestError(
            f"CRM rejected update with {response.status_code}",
            error_code=f"HTTP_{response.status_code}",
            provider_response={"body": response.text},
        )


class CrmClient:
    """Posts ``log outcome`` updates keyed by prospect id."""

    def __init__(
        self,
        config: CrmConfig | None = None,
        client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._config = config or CrmConfig()
        self._client = client
        self._retry_wait = retry_wait or wait_exponential(
            multiplier=self._config.retry_initial_seconds,
            max=self._config.retry_max_seconds,
        )

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.api_base_url,
                timeout=self._config.request_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def log_outcome(
        self,
        prospect_id: str,
        phone_number: str,
        status: str,
        list_id: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Update the prospect's status, retrying transient failures.

        Raises:
            CrmTransientError: still failing after the configured attempts.
            CrmRequestError: the CRM rejected the update.
        """
        if status not in CRM_STATUSES:
            logger.warning("CRM status outside known set; using default", extra={"status": status})
            status = DEFAULT_CRM_STATUS

        form = {
            "auth_token": self._config.auth_token,
            "lead_id": prospect_id,
            # The CRM stores national numbers without the +1 prefix.
            "phone_number": phone_number.removeprefix("+1"),
            "status": status,
        }
        if list_id:
            form["list_id"] = list_id
        if notes:
            form["notes"] = notes

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(CrmTransientError),
            reraise=True,
        ):
            with attempt:
                return await self._post(form)
        raise CrmTransientError("CRM retries exhausted")  # pragma: no cover

    async def _post(self, form: dict[str, str]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post("/v1/leads/update", data=form)
        except httpx.TimeoutException as exc:
            raise CrmTransientError(f"CRM timeout: {exc}", error_code="TIMEOUT") from exc
        except httpx.TransportError as exc:
            raise CrmTransientError(f"CRM unreachable: {exc}", error_code="TRANSPORT_ERROR") from exc
        _raise_if_error(response)
        try:
            data = response.json()
        except ValueError:
            return {"body": response.text}
        return data if isinstance(data, dict) else {"body": data}
