"""
synth/features/workflows/pipedream.py

Execution provider seam and the Pipedream implementation.
"""

from typing import Any, Dict, Optional, Protocol
import logging

import httpx

from synth.core.config import settings
from synth.core.errors import ExecutionProviderError


logger = logging.getLogger(__name__)


class ExecutionProvider(Protocol):
    def execute(self, provider_workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...


class PipedreamClient:
    """Runs deployed workflows through the Pipedream REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PIPEDREAM_API_KEY
        self.base_url = (base_url or settings.PIPEDREAM_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PIPEDREAM_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def execute(self, provider_workflow_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise ExecutionProviderError(
                "Missing PIPEDREAM_API_KEY. Cannot execute workflow.",
                code="provider_not_configured",
                status_code=503,
            )

        url = f"{self.base_url}/workflows/{provider_workflow_id}/execute"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, headers=self._headers(), json=payload or {})
        except httpx.HTTPError as exc:
            logger.error(
                "[pipedream] request failed",
                extra={"provider_workflow_id": provider_workflow_id, "error": str(exc)},
            )
            raise ExecutionProviderError(
                "Network error while executing workflow in Pipedream.",
                details={"provider_workflow_id": provider_workflow_id},
            ) from exc

        if response.status_code >= 300:
            logger.error(
                "[pipedream] execution rejected",
                extra={"provider_workflow_id": provider_workflow_id, "status": response.status_code},
            )
            raise ExecutionProviderError(
                f"Pipedream returned {response.status_code}",
                details={"provider_workflow_id": provider_workflow_id, "provider_status": response.status_code},
            )

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"raw": response.text[:2000]}
        return body if isinstance(body, dict) else {"result": body}
