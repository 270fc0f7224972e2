"""External LIMS (Benchling custom-entity registry) REST client.

Every call goes through ``_request``, which applies Basic auth (API key as
user, blank password), the configured timeout and the LIMS circuit breaker,
and maps failures onto the sync error taxonomy:

- 404 → LimsNotFoundError (callers that treat absence as a result catch it)
- other 4xx → LimsValidationError (not retryable)
- 5xx, network errors, open circuit → LimsTransportError (retryable)
"""

import asyncio
import base64
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from samplesync.core.config import Settings, settings
from samplesync.core.exceptions import (
    LimsNotFoundError,
    LimsTransportError,
    LimsValidationError,
    TaskFailedError,
    TaskTimeoutError,
)
from samplesync.core.resilience import CircuitBreakerOpen, lims_circuit_breaker
from samplesync.integrations.lims_domain import ExternalSample, TaskState, TaskStatus

logger = logging.getLogger(__name__)


class LimsClient:
    """Client for the LIMS custom-entity REST API."""

    def __init__(self, config: Settings | None = None) -> None:
        """Initialize the LIMS client with API credentials.

        Args:
            config: Settings to read connection details from. Defaults to
                the process settings.
        """
        config = config or settings
        self.base_url = config.LIMS_API_URL
        self.schema_id = config.LIMS_SCHEMA_ID
        self.registry_id = config.LIMS_REGISTRY_ID
        self.folder_id = config.LIMS_FOLDER_ID
        self.id_prefix = config.LIMS_ID_PREFIX
        self.page_size = config.LIMS_PAGE_SIZE
        self.timeout = config.LIMS_REQUEST_TIMEOUT_SECONDS
        self.task_max_attempts = config.LIMS_TASK_MAX_ATTEMPTS
        self.task_base_delay = config.LIMS_TASK_BASE_DELAY_SECONDS
        token = base64.b64encode(
            f"{config.LIMS_API_KEY.get_secret_value()}:".encode()
        ).decode()
        self.headers: dict[str, str] = {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_http_error(self, error: httpx.HTTPStatusError, path: str) -> None:
        """Translate an HTTP error response into a sync exception.

        Args:
            error: The HTTP status error from httpx.
            path: Request path, for logging and not-found ids.

        Raises:
            LimsNotFoundError: On 404.
            LimsTransportError: On 5xx.
            LimsValidationError: On any other 4xx.
        """
        status_code = error.response.status_code
        try:
            payload = error.response.json()
            message = payload.get("error", {}).get("message") or str(payload)
        except Exception:
            payload = error.response.text
            message = f"LIMS API error: {status_code}"

        if status_code == 404:
            lims_circuit_breaker.record_success()
            raise LimsNotFoundError(path.rsplit("/", 1)[-1]) from error

        if status_code >= 500:
            lims_circuit_breaker.record_failure()
            logger.error("LIMS server error: status=%s path=%s", status_code, path)
            raise LimsTransportError(message, status_code=status_code) from error

        logger.error(
            "LIMS rejected request: status=%s path=%s message=%s",
            status_code,
            path,
            message,
        )
        raise LimsValidationError(message, status_code=status_code, payload=payload) from error

    def _handle_connection_error(self, error: httpx.RequestError) -> None:
        """Record and re-raise a network failure as LimsTransportError."""
        lims_circuit_breaker.record_failure()
        logger.error("LIMS connection error: %s", str(error))
        raise LimsTransportError(f"Failed to connect to LIMS: {error}") from error

    def _check_circuit(self) -> None:
        """Check circuit breaker before making a call.

        Raises:
            LimsTransportError: If the circuit breaker is open.
        """
        try:
            lims_circuit_breaker.check()
        except CircuitBreakerOpen as e:
            raise LimsTransportError(
                "LIMS circuit breaker is open - service temporarily unavailable"
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform one LIMS API call and return the decoded JSON body."""
        self._check_circuit()
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self.headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                lims_circuit_breaker.record_success()
                if not response.content:
                    return {}
                body = response.json()
                return body if isinstance(body, dict) else {}
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, path)
            raise
        except httpx.RequestError as e:
            self._handle_connection_error(e)
            raise

    def _entity_payload(
        self, name: str, fields: dict[str, Any], registry_code: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schemaId": self.schema_id,
            "registryId": self.registry_id,
            "name": name,
            "folderId": self.folder_id,
            "fields": fields,
        }
        if registry_code:
            payload["entityRegistryId"] = registry_code
        return payload

    # ==============
    # Single entity
    # ==============

    async def fetch_by_id(self, external_id: str) -> ExternalSample | None:
        """Fetch a custom entity by its LIMS id.

        Returns:
            The entity, or None if the LIMS has no such entity.

        Raises:
            LimsTransportError: Network failure or 5xx.
            LimsValidationError: Any other 4xx.
        """
        try:
            data = await self._request("GET", f"/custom-entities/{external_id}")
        except LimsNotFoundError:
            return None
        return ExternalSample.from_api(data)

    async def fetch_by_registry_code(self, registry_code: str) -> ExternalSample | None:
        """Fetch a custom entity by its human-readable registry code (e.g. EBM042)."""
        data = await self._request(
            "GET",
            "/custom-entities",
            params={
                "registryId": self.registry_id,
                "entityRegistryId": registry_code,
            },
        )
        for entity in data.get("customEntities") or []:
            sample = ExternalSample.from_api(entity)
            if sample.registry_code == registry_code:
                return sample
        return None

    async def list_all(self, page_size: int | None = None) -> AsyncIterator[ExternalSample]:
        """Walk every entity of the sample schema, one page at a time.

        Only entities whose registry code carries the configured prefix are
        yielded. Each call starts a fresh cursor walk; the walk ends when the
        server stops returning a cursor.

        Args:
            page_size: Entities requested per page.

        Yields:
            ExternalSample for each matching entity.
        """
        limit = page_size or self.page_size
        cursor: str | None = None
        seen_cursors: set[str] = set()
        page = 0

        while True:
            params: dict[str, Any] = {
                "schemaId": self.schema_id,
                "registryId": self.registry_id,
                "limit": limit,
            }
            if cursor:
                params["cursor"] = cursor

            data = await self._request("GET", "/custom-entities", params=params)
            page += 1
            for entity in data.get("customEntities") or []:
                sample = ExternalSample.from_api(entity)
                if sample.registry_code.startswith(self.id_prefix):
                    yield sample

            cursor = data.get("nextCursor") or None
            if not cursor:
                logger.debug("LIMS listing finished", extra={"pages": page})
                return
            if cursor in seen_cursors:
                logger.error(
                    "LIMS returned a repeated cursor, stopping listing",
                    extra={"pages": page},
                )
                return
            seen_cursors.add(cursor)

    async def create(
        self, name: str, fields: dict[str, Any], registry_code: str | None = None
    ) -> ExternalSample:
        """Register a new custom entity.

        Args:
            name: Entity name (the registry code for samples).
            fields: LIMS field mapping.
            registry_code: Registry code to request for the new entity.

        Returns:
            The created entity with its assigned id and registry code.
        """
        data = await self._request(
            "POST", "/custom-entities", json=self._entity_payload(name, fields, registry_code)
        )
        created = ExternalSample.from_api(data)
        logger.info(
            "LIMS entity created",
            extra={"external_id": created.id, "registry_code": created.registry_code},
        )
        return created

    async def update(
        self, external_id: str, fields: dict[str, Any], name: str | None = None
    ) -> ExternalSample:
        """Patch the fields of an existing entity.

        Raises:
            LimsNotFoundError: If the entity no longer exists.
        """
        body: dict[str, Any] = {"fields": fields}
        if name:
            body["name"] = name
        data = await self._request("PATCH", f"/custom-entities/{external_id}", json=body)
        return ExternalSample.from_api(data)

    async def delete(self, external_id: str) -> bool:
        """Delete an entity.

        Returns:
            True if deleted, False if the entity did not exist.
        """
        try:
            await self._request("DELETE", f"/custom-entities/{external_id}")
        except LimsNotFoundError:
            logger.info("LIMS entity already absent", extra={"external_id": external_id})
            return False
        return True

    # ===========
    # Bulk tasks
    # ===========

    async def bulk_create(self, entities: list[dict[str, Any]]) -> str:
        """Start a bulk-create task.

        Args:
            entities: Dicts with ``name``, ``fields`` and optional ``registry_code``.

        Returns:
            The LIMS task id.
        """
        body = {
            "customEntities": [
                self._entity_payload(e["name"], e["fields"], e.get("registry_code"))
                for e in entities
            ]
        }
        data = await self._request("POST", "/custom-entities:bulk-create", json=body)
        return str(data["taskId"])

    async def bulk_update(self, updates: list[dict[str, Any]]) -> str:
        """Start a bulk-update task.

        Args:
            updates: Dicts with ``id`` and ``fields``.

        Returns:
            The LIMS task id.
        """
        body = {"customEntities": [{"id": u["id"], "fields": u["fields"]} for u in updates]}
        data = await self._request("POST", "/custom-entities:bulk-update", json=body)
        return str(data["taskId"])

    async def poll_task(self, task_id: str) -> TaskStatus:
        """Fetch the current state of a long-running task."""
        data = await self._request("GET", f"/tasks/{task_id}")
        raw_state = str(data.get("status", "")).upper()
        try:
            state = TaskState(raw_state)
        except ValueError:
            logger.warning(
                "Unknown LIMS task status, treating as running",
                extra={"task_id": task_id, "status": raw_state},
            )
            state = TaskState.RUNNING
        return TaskStatus(
            task_id=task_id,
            state=state,
            data=data.get("response") or data.get("data") or {},
            error=data.get("error") or data.get("errorMessage") or data.get("errors"),
        )

    async def wait_for_task(
        self,
        task_id: str,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> TaskStatus:
        """Poll a task until it finishes, backing off exponentially.

        The delay before poll ``n + 1`` is ``base_delay * 2 ** n`` seconds.

        Args:
            task_id: The LIMS task id.
            max_attempts: Maximum number of polls.
            base_delay: Initial delay in seconds.

        Returns:
            The SUCCEEDED task status.

        Raises:
            TaskFailedError: The task reported FAILED. Raised on the poll that
                observes it; the task is not polled again.
            TaskTimeoutError: The task was still unfinished after max_attempts polls.
        """
        attempts = max_attempts if max_attempts is not None else self.task_max_attempts
        delay_base = base_delay if base_delay is not None else self.task_base_delay

        for attempt in range(attempts):
            status = await self.poll_task(task_id)
            if status.state == TaskState.SUCCEEDED:
                return status
            if status.state == TaskState.FAILED:
                logger.error(
                    "LIMS task failed",
                    extra={"task_id": task_id, "error": str(status.error)},
                )
                raise TaskFailedError(task_id, status.error)
            if attempt < attempts - 1:
                await asyncio.sleep(delay_base * 2**attempt)

        logger.warning("LIMS task timed out", extra={"task_id": task_id, "attempts": attempts})
        raise TaskTimeoutError(task_id, attempts)

    async def health_check(self) -> bool:
        """Check if the LIMS API is reachable with the configured credentials."""
        try:
            await self._request(
                "GET",
                "/custom-entities",
                params={"schemaId": self.schema_id, "limit": 1},
            )
            return True
        except Exception:
            logger.exception("LIMS health check failed")
            return False


# Singleton instance
_lims_client: LimsClient | None = None


def get_lims_client() -> LimsClient:
    """Get or create the LIMS client singleton.

    Returns:
        The shared LimsClient instance.
    """
    global _lims_client
    if _lims_client is None:
        _lims_client = LimsClient()
    return _lims_client
