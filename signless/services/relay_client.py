from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..core.config import settings
from ..core.logging_config import get_relay_logger
from ..schemas.relay import RelayTaskStatus

logger = get_relay_logger()


class RelayClientError(Exception):
    """Error talking to the relay network API."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: str = "unknown"):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.message = message


class GelatoRelayClient:
    """
    Thin async client for the Gelato relay HTTP API.

    The http client is injected so tests and the app lifespan control its lifetime;
    there is no process-wide instance. Calls are made exactly once, never retried here.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: Optional[str] = None):
        self.http_client = http_client
        self.base_url = (base_url or settings.RELAY_API_URL).rstrip("/")

    @classmethod
    def create(cls) -> "GelatoRelayClient":
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=settings.RELAY_HTTP_TIMEOUT, connect=10.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )
        logger.info("Initialized relay HTTP client",
                    base_url=settings.RELAY_API_URL,
                    timeout=settings.RELAY_HTTP_TIMEOUT,
                    event_type="relay_client_initialized")
        return cls(http_client)

    async def aclose(self) -> None:
        await self.http_client.aclose()
        logger.info("Relay HTTP client closed", event_type="relay_client_closed")

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.warning("Relay request error",
                           method=method,
                           url=url,
                           error=str(e),
                           event_type="relay_request_error")
            raise RelayClientError(f"Request to relay failed: {e}", error_type="network_error") from e

        logger.debug("Relay response received",
                     method=method,
                     url=url,
                     status_code=response.status_code,
                     event_type="relay_response")
        return response

    @staticmethod
    def _error_from_response(response: httpx.Response, operation: str) -> RelayClientError:
        try:
            body = response.json()
            detail = (body.get("message") or body.get("error")) if isinstance(body, dict) else None
            detail = detail or response.text
        except ValueError:
            detail = response.text
        error_type = "server_error" if response.status_code >= 500 else "client_error"
        return RelayClientError(
            f"{operation} failed with HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
            error_type=error_type,
        )

    async def estimate_fee(
        self,
        chain_id: int,
        fee_token: str,
        gas_limit: int,
        is_high_priority: bool = False,
    ) -> int:
        """
        Ask the relay fee oracle for the fee of a call using at most gas_limit gas.

        Returns:
            Estimated fee in fee_token base units
        """
        response = await self._request(
            "GET",
            f"/oracles/{chain_id}/estimate",
            params={
                "paymentToken": fee_token,
                "gasLimit": str(gas_limit),
                "isHighPriority": str(is_high_priority).lower(),
            },
        )
        if response.status_code >= 400:
            raise self._error_from_response(response, "Fee estimation")

        try:
            return int(response.json()["estimatedFee"])
        except (ValueError, KeyError, TypeError) as e:
            raise RelayClientError(f"Malformed fee estimate: {response.text[:200]}",
                                   error_type="invalid_response") from e

    async def call_with_sync_fee(
        self,
        chain_id: int,
        target: str,
        data: str,
        fee_token: str,
        is_relay_context: bool = True,
    ) -> str:
        """
        Submit a relayed call whose fee is paid by the target contract during execution.

        Returns:
            The relay task id; execution continues asynchronously on the relay side
        """
        payload: Dict[str, Any] = {
            "chainId": str(chain_id),
            "target": target,
            "data": data,
            "feeToken": fee_token,
            "isRelayContext": is_relay_context,
        }
        response = await self._request("POST", "/relays/v2/call-with-sync-fee", json=payload)
        if response.status_code >= 400:
            raise self._error_from_response(response, "Relay submission")

        try:
            task_id = response.json()["taskId"]
        except (ValueError, KeyError, TypeError) as e:
            raise RelayClientError(f"Relay response carried no taskId: {response.text[:200]}",
                                   error_type="invalid_response") from e

        logger.info("Relay task created",
                    chain_id=chain_id,
                    target=target,
                    task_id=task_id,
                    event_type="relay_task_created")
        return task_id

    async def get_task_status(self, task_id: str) -> Optional[RelayTaskStatus]:
        """
        Look up a relay task.

        Returns:
            The task status, or None when the relay does not know the task yet
        """
        response = await self._request("GET", f"/tasks/status/{task_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise self._error_from_response(response, "Task status lookup")

        try:
            body = response.json()
            task = body.get("task") if isinstance(body, dict) else None
        except ValueError as e:
            raise RelayClientError(f"Malformed task status: {response.text[:200]}",
                                   error_type="invalid_response") from e
        if not task:
            return None
        return RelayTaskStatus.model_validate(task)
