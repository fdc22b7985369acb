"""HTTP client for controller-to-instance communication.

This module provides the HttpInstanceGateway class which speaks the
instance API (``/api/instance/...``) of a remote relay instance.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from relay_core.exceptions import TransportError, error_from_dict
from relay_backend.transport.chunking import Chunk

logger = logging.getLogger(__name__)


class HttpInstanceGateway:
    """Gateway to a relay instance reached over HTTP.

    Connection failures and timeouts are retried with exponential backoff;
    an error body (``{"error": {...}}``) is re-raised as the RelayError it
    describes, so the orchestrator handles remote and local failures alike.
    """

    DEFAULT_TIMEOUT = 10.0  # seconds per request
    MAX_RETRIES = 3
    RETRY_DELAY = 1.0  # doubled on each retry

    def __init__(
        self,
        instance_id: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            instance_id: Identifier of the remote instance
            base_url: Root URL of the instance, e.g. ``http://10.0.0.5:8000``
            timeout: Per-request timeout in seconds
            max_retries: Retries after a connection failure or timeout
            transport: Optional httpx transport (tests mount an ASGI app here)
        """
        self.instance_id = instance_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HttpInstanceGateway":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def start(self) -> None:
        if self._client is not None:
            return
        # One controller talks to one instance: a small pool is enough.
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            limits=httpx.Limits(max_keepalive_connections=4, max_connections=8),
            transport=self._transport,
        )
        logger.debug("Gateway to %s opened (%s)", self.instance_id, self._base_url)

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
            logger.debug("Gateway to %s closed", self.instance_id)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            RelayError: the instance answered with an error body
            TransportError: the instance could not be reached or replied garbage
        """
        await self.start()
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
                break
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt >= self._max_retries:
                    logger.error(
                        "%s %s on %s failed after %d retries: %s",
                        method, path, self.instance_id, attempt, e,
                    )
                    raise TransportError(
                        f"Instance {self.instance_id} unreachable: {e}",
                        counters={"attempts": attempt + 1},
                    ) from e
                delay = self.RETRY_DELAY * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "%s unreachable (%s), retry %d/%d in %.1fs",
                    self.instance_id, type(e).__name__, attempt, self._max_retries, delay,
                )
                await asyncio.sleep(delay)
            except httpx.HTTPError as e:
                raise TransportError(f"Request to {self.instance_id} failed: {e}") from e

        if response.is_error:
            raise self._error_from(response)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {self.instance_id}: {e}") from e

    def _error_from(self, response: httpx.Response) -> Exception:
        try:
            error = response.json().get("error")
        except (ValueError, AttributeError):
            error = None
        if isinstance(error, dict):
            return error_from_dict(error)
        return TransportError(
            f"HTTP {response.status_code} from {self.instance_id}",
            counters={"status_code": response.status_code},
        )

    async def list_platforms(self, force_name: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"force": force_name} if force_name else {}
        data = await self._request("GET", "/api/instance/platforms", params=params)
        return data["platforms"]

    async def lock_platform(self, name: str, force_name: str, owner: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request(
            "POST", f"/api/instance/platforms/{name}/lock", json={"force": force_name, "owner": owner}
        )
        return data["lock"]

    async def unlock_platform(self, name: str) -> int:
        data = await self._request("POST", f"/api/instance/platforms/{name}/unlock")
        return data["restored"]

    async def queue_export(self, name: str, force_name: str, transfer_id: Optional[str] = None) -> str:
        data = await self._request(
            "POST",
            "/api/instance/exports",
            json={"platform_name": name, "force": force_name, "transfer_id": transfer_id},
        )
        return data["job_id"]

    async def job_status(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/instance/jobs/{job_id}")

    async def get_export(self, job_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/instance/exports/{job_id}")

    async def begin_import_session(
        self, session_id: str, total: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/instance/import-sessions",
            json={"session_id": session_id, "total": total, "metadata": metadata or {}},
        )

    async def send_chunk(self, chunk: Chunk) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/instance/import-sessions/{chunk.session_id}/chunks",
            json={"index": chunk.index, "total": chunk.total, "data": chunk.data},
        )

    async def finalize_import_session(
        self,
        session_id: str,
        *,
        checksum: Optional[str] = None,
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str:
        data = await self._request(
            "POST",
            f"/api/instance/import-sessions/{session_id}/finalize",
            json={
                "checksum": checksum,
                "platform_name": platform_name,
                "force": force_name,
                "transfer_id": transfer_id,
            },
        )
        return data["job_id"]

    async def activate_import(self, job_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/instance/imports/{job_id}/activate")

    async def validation_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        data = await self._request("GET", f"/api/instance/imports/{job_id}/validation")
        return data.get("validation")

    async def delete_platform(self, name: str, force_name: str) -> bool:
        data = await self._request(
            "DELETE", f"/api/instance/platforms/{name}", params={"force": force_name}
        )
        return bool(data.get("deleted"))
