# src/persona_tasks/tasks/external_services.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.ports import LLMClient
from .task_models import IMAGE_GENERATION, ServiceTask, TaskType

logger = logging.getLogger(__name__)

MOCK_SOLANA_TX_ID = "mock_transaction_id"


@dataclass(slots=True, frozen=True)
class ServiceResult:
    success: bool
    data: Any = None
    error: str | None = None


def _error_text(exc: Exception) -> str:
    return str(exc).strip() or exc.__class__.__name__


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class ExternalServiceHandler:
    """
    Executes the external side effect of a service task.

    Per-type handlers may raise; process() converts every outcome into a ServiceResult.
    """

    def __init__(self, llm: LLMClient, settings: Any, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._llm = llm
        self._settings = settings
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            timeout = float(getattr(self._settings, "http_timeout_seconds", 30.0) or 30.0)
            self._http = httpx.AsyncClient(timeout=timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def process(self, task: Any) -> ServiceResult:
        if not isinstance(task, ServiceTask):
            return ServiceResult(success=False, error=f"Unsupported task type: {getattr(task, 'task_type', None)}")

        try:
            if task.task_type == TaskType.API_CALL:
                data = await self.handle_api_call(task)
            elif task.task_type == TaskType.BLOCKCHAIN_TX:
                data = await self.handle_blockchain_tx(task)
            elif task.task_type == TaskType.MCP_ACTION:
                data = await self.handle_mcp_action(task)
            else:
                return ServiceResult(success=False, error=f"Unsupported task type: {task.task_type}")
        except Exception as e:
            logger.warning(
                "External service %s failed task_id=%s: %s",
                task.external_service.service_name,
                task.task_id,
                _error_text(e),
            )
            return ServiceResult(success=False, error=_error_text(e))

        return ServiceResult(success=True, data=data)

    # ---- api_call ----

    async def handle_api_call(self, task: ServiceTask) -> Any:
        service = task.external_service
        if service.service_name == IMAGE_GENERATION:
            return await self.generate_image(task)

        req = service.request_data or {}
        url = req.get("url")
        if not url and service.service_name.startswith(("http://", "https://")):
            url = service.service_name
        if not isinstance(url, str) or not url.strip():
            raise ValueError(f"No request target for service {service.service_name!r}")

        method = str(req.get("method") or "GET").upper()
        body = req.get("body")
        headers = req.get("headers") if isinstance(req.get("headers"), dict) else None

        kwargs: dict[str, Any] = {"headers": headers}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = str(body)

        logger.info("API call %s %s task_id=%s", method, url, task.task_id)
        resp = await self._client().request(method, url, **kwargs)
        resp.raise_for_status()
        return _response_body(resp)

    async def generate_image(self, task: ServiceTask) -> str:
        service = task.external_service
        prompt = str((service.request_data or {}).get("prompt") or "").strip()
        if not prompt:
            raise ValueError("Image generation requires a non-empty prompt")

        api_key = service.api_key or getattr(self._settings, "openai_api_key", None)
        if not api_key:
            raise ValueError("No OpenAI API key available for image generation")

        return await self._llm.generate_image(prompt=prompt, api_key=api_key)

    # ---- blockchain_tx ----

    async def handle_blockchain_tx(self, task: ServiceTask) -> Any:
        name = task.external_service.service_name.strip().lower()
        if name == "solana":
            # Stub: no chain access yet.
            logger.info("Solana transaction stub task_id=%s", task.task_id)
            return {"txId": MOCK_SOLANA_TX_ID}
        raise ValueError(f"Unsupported blockchain service: {task.external_service.service_name}")

    # ---- mcp_action ----

    async def handle_mcp_action(self, task: ServiceTask) -> Any:
        req = task.external_service.request_data or {}
        action = req.get("action") or req.get("command")
        params = req.get("params") if isinstance(req.get("params"), dict) else {}

        endpoint = str(getattr(self._settings, "mcp_endpoint", "") or "")
        if not endpoint:
            raise RuntimeError("MCP endpoint is not configured. Set PERSONA_MCP_ENDPOINT.")

        resp = await self._client().post(endpoint, json={"action": action, "params": params})
        if resp.status_code != 200:
            raise RuntimeError(f"MCP action failed with HTTP {resp.status_code}")
        return _response_body(resp)
