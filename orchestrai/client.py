"""HTTP client for the orchestration backend."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import OrchestraiConfig, load_config
from .constants import (
    CONTEXT_CONFIG_PATH,
    CONTEXT_SEARCH_PATH,
    CREATE_WORKFLOW_PATH,
    DEFAULT_API_URL,
    DEFAULT_TIMEOUT,
    HEALTH_PATH,
    SUBSCRIBE_PATH,
    WORKFLOWS_PATH,
)
from .context import ContextConfig, SearchResult, rank_results
from .contracts import ProgressUpdate, WorkflowRequest, WorkflowSummary
from .errors import BackendError, SubmissionError

logger = logging.getLogger(__name__)

_ID_KEYS = ("workflow_id", "workflowId", "id")


def _derive_ws_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://") :]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://") :]
    return base_url


def _unwrap(payload: Any) -> Any:
    """Strip the ``{"success": ..., "data": ...}`` envelope if present."""
    if isinstance(payload, dict) and "success" in payload and "data" in payload:
        return payload["data"]
    return payload


def _error_message(payload: Any, response: httpx.Response) -> str:
    if isinstance(payload, dict):
        for key in ("error", "detail", "message"):
            if payload.get(key):
                return str(payload[key])
    return f"HTTP {response.status_code}"


def _extract_workflow_id(payload: Any) -> Optional[str]:
    candidates = [payload]
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        candidates.append(payload["data"])
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        for key in _ID_KEYS:
            value = candidate.get(key)
            if value not in (None, ""):
                return str(value)
    return None


class BackendClient:
    """Async client for the workflow, history and context endpoints.

    The caller's identity is assumed to be established already; the only
    credential sent is the optional ``X-API-Key`` header.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        ws_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.ws_url = (ws_url or _derive_ws_url(self.base_url)).rstrip("/")
        self.api_key = api_key

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: OrchestraiConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BackendClient":
        backend = config.backend
        return cls(
            backend.base_url,
            ws_url=backend.ws_url,
            api_key=backend.api_key,
            timeout=backend.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            raise BackendError(
                _error_message(payload, response), status_code=response.status_code
            )
        if payload is None:
            raise BackendError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            )
        if isinstance(payload, dict) and payload.get("success") is False:
            raise BackendError(
                _error_message(payload, response), status_code=response.status_code
            )
        return payload

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, request: WorkflowRequest) -> str:
        """Create a workflow and return its backend-assigned id.

        Raises:
            SubmissionError: If the backend rejects the request, cannot be
                reached, or answers without a workflow id.
        """
        try:
            payload = await self._request(
                "POST", CREATE_WORKFLOW_PATH, json=request.to_payload()
            )
        except BackendError as e:
            raise SubmissionError(str(e), status_code=e.status_code) from e

        workflow_id = _extract_workflow_id(payload)
        if workflow_id is None:
            raise SubmissionError("Backend response did not include a workflow id")
        logger.info(f"Created workflow_id={workflow_id} for {request.source_url}")
        return workflow_id

    async def get_status(self, workflow_id: str) -> ProgressUpdate:
        """Fetch the current status of ``workflow_id``.

        Raises:
            BackendError: On HTTP or network failure.
            ParseError: If the status payload cannot be decoded.
        """
        payload = await self._request("GET", f"{WORKFLOWS_PATH}/{workflow_id}")
        return ProgressUpdate.from_payload(_unwrap(payload), workflow_id=workflow_id)

    async def list_workflows(self) -> List[WorkflowSummary]:
        """Return previously created workflows in backend order."""
        rows = _unwrap(await self._request("GET", WORKFLOWS_PATH))
        if isinstance(rows, dict):
            rows = rows.get("workflows", [])
        if not isinstance(rows, list):
            raise BackendError("Unexpected workflow list payload")

        summaries: List[WorkflowSummary] = []
        for row in rows:
            try:
                summaries.append(WorkflowSummary.model_validate(row))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed workflow row: {e}")
        return summaries

    def subscription_url(self, workflow_id: str) -> str:
        """WebSocket URL of the progress stream for ``workflow_id``."""
        return f"{self.ws_url}{SUBSCRIBE_PATH}/{workflow_id}"

    def subscription_headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def health(self) -> Dict[str, Any]:
        """Probe the backend health endpoint.

        Never raises; an unreachable backend is reported as unhealthy.
        """
        try:
            response = await self._http.get(HEALTH_PATH)
        except httpx.HTTPError as e:
            return {"status": "unhealthy", "error": str(e)}
        if response.is_success:
            return {"status": "healthy", "status_code": response.status_code}
        return {
            "status": "unhealthy",
            "status_code": response.status_code,
            "error": f"Backend API returned {response.status_code}",
        }

    # ------------------------------------------------------------------
    # Context search
    async def search_context(self, query: str, limit: int = 10) -> List[SearchResult]:
        payload = await self._request(
            "POST", CONTEXT_SEARCH_PATH, json={"query": query, "limit": limit}
        )
        rows = _unwrap(payload)
        if isinstance(rows, dict):
            rows = rows.get("results", [])
        if not isinstance(rows, list):
            raise BackendError("Unexpected context search payload")

        results: List[SearchResult] = []
        for row in rows:
            try:
                results.append(SearchResult.model_validate(row))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed search result: {e}")
        return rank_results(results)

    async def get_context_config(self) -> ContextConfig:
        payload = await self._request("GET", CONTEXT_CONFIG_PATH)
        try:
            return ContextConfig.model_validate(_unwrap(payload))
        except PydanticValidationError as e:
            raise BackendError(f"Invalid context configuration: {e}") from e

    async def update_context_config(self, config: ContextConfig) -> ContextConfig:
        await self._request("POST", CONTEXT_CONFIG_PATH, json=config.model_dump())
        logger.info(f"Updated context configuration: {config.model_dump()}")
        return config


def get_client(config: Optional[OrchestraiConfig] = None) -> BackendClient:
    """Factory function to get a client for the configured backend."""

    return BackendClient.from_config(config or load_config())
