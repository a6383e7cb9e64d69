"""
HTTP Gateway.

Implements the Gateway interface against the remote backend-as-a-service
over HTTPS. Every capability is a thin request helper; the remote platform
owns persistence, auth, brokerage functions and the LLM integration.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote
import logging

import httpx

from gateway.base import (
    AuthCapability,
    EntityCollection,
    EntityNamespace,
    FunctionResult,
    FunctionsCapability,
    Gateway,
    IntegrationsNamespace,
    LLMCapability,
)
from gateway.errors import RemoteCallError

logger = logging.getLogger(__name__)

_ERROR_DETAIL_LIMIT = 280


class _Transport:
    """Shared request helper that converts transport failures to RemoteCallError."""

    def __init__(self, client: httpx.Client, app_id: str):
        self.client = client
        self.app_id = app_id

    def app_path(self, suffix: str) -> str:
        return f"/apps/{self.app_id}/{suffix.lstrip('/')}"

    def request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        try:
            response = self.client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Gateway %s transport error: %s", operation, exc)
            raise RemoteCallError(operation, str(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > _ERROR_DETAIL_LIMIT:
                detail = detail[:_ERROR_DETAIL_LIMIT]
            logger.warning("Gateway %s returned %d", operation, response.status_code)
            raise RemoteCallError(operation, detail or response.reason_phrase, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteCallError(operation, "response body is not valid JSON", status_code=response.status_code) from exc


class HttpEntityCollection(EntityCollection):
    """Entity CRUD over ``/apps/{app_id}/entities/{Type}``."""

    def __init__(self, transport: _Transport, entity_type: str):
        self._transport = transport
        self.entity_type = entity_type

    def _path(self, entity_id: Optional[str] = None) -> str:
        suffix = f"entities/{self.entity_type}"
        if entity_id is not None:
            suffix = f"{suffix}/{quote(str(entity_id), safe='')}"
        return self._transport.app_path(suffix)

    def list(self, sort: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if sort:
            params["sort"] = sort
        if limit is not None:
            params["limit"] = int(limit)
        payload = self._transport.request(f"{self.entity_type}.list", "GET", self._path(), params=params or None)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise RemoteCallError(f"{self.entity_type}.list", "expected a list of records")
        return payload

    def get(self, entity_id: str) -> Dict[str, Any]:
        return self._transport.request(f"{self.entity_type}.get", "GET", self._path(entity_id)) or {}

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._transport.request(f"{self.entity_type}.create", "POST", self._path(), json=fields) or {}

    def update(self, entity_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._transport.request(f"{self.entity_type}.update", "PUT", self._path(entity_id), json=fields) or {}

    def delete(self, entity_id: str) -> None:
        self._transport.request(f"{self.entity_type}.delete", "DELETE", self._path(entity_id))


class HttpAuth(AuthCapability):
    """Session auth against the remote platform."""

    def __init__(self, transport: _Transport, login_url: str):
        self._transport = transport
        self._login_url = login_url

    def me(self) -> Dict[str, Any]:
        return self._transport.request("auth.me", "GET", self._transport.app_path("entities/User/me")) or {}

    def is_authenticated(self) -> bool:
        try:
            self.me()
            return True
        except RemoteCallError as exc:
            if exc.status_code in {401, 403}:
                return False
            raise

    def redirect_to_login(self, return_url: str) -> str:
        return (
            f"{self._login_url}?app_id={quote(self._transport.app_id, safe='')}"
            f"&from_url={quote(return_url, safe='')}"
        )

    def logout(self) -> None:
        self._transport.request("auth.logout", "POST", self._transport.app_path("auth/logout"))


class HttpFunctions(FunctionsCapability):
    """Named remote functions (brokerage, market data, email)."""

    def __init__(self, transport: _Transport):
        self._transport = transport

    def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None) -> FunctionResult:
        operation = f"functions.{name}"
        body = self._transport.request(
            operation, "POST", self._transport.app_path(f"functions/{name}"), json=payload or {}
        )
        if body is None:
            return FunctionResult(data={})
        if not isinstance(body, dict):
            raise RemoteCallError(operation, "expected a JSON object")
        return FunctionResult(data=body)


class HttpLLM(LLMCapability):
    """Core.InvokeLLM integration endpoint."""

    def __init__(self, transport: _Transport):
        self._transport = transport

    def invoke_llm(
        self,
        prompt: str,
        add_context_from_internet: bool = False,
        response_json_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body = {
            "prompt": prompt,
            "add_context_from_internet": bool(add_context_from_internet),
            "response_json_schema": response_json_schema,
        }
        result = self._transport.request(
            "integrations.Core.InvokeLLM",
            "POST",
            self._transport.app_path("integration-endpoints/Core/InvokeLLM"),
            json=body,
        )
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise RemoteCallError("integrations.Core.InvokeLLM", "expected a JSON object")
        return result


class HttpGateway(Gateway):
    """
    Remote gateway over HTTPS.

    Configuration:
        - base_url: Platform API root
        - app_id: Application id on the platform
        - token: Bearer token for the signed-in user
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        app_id: str,
        token: Optional[str] = None,
        timeout: float = 60.0,
        login_url: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"X-App-Id": app_id, "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._transport = _Transport(self._client, app_id)
        self.entities = EntityNamespace(lambda entity_type: HttpEntityCollection(self._transport, entity_type))
        self.auth = HttpAuth(self._transport, login_url or base_url)
        self.functions = HttpFunctions(self._transport)
        self.integrations = IntegrationsNamespace(HttpLLM(self._transport))

    def ping(self) -> bool:
        try:
            return self.auth.is_authenticated()
        except RemoteCallError:
            return False

    def close(self) -> None:
        self._client.close()
