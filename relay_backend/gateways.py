"""Instance gateways: how the controller reaches an instance.

``LocalInstanceGateway`` calls an in-process ``InstanceService``; the HTTP
gateway in ``relay_backend.instance_client`` speaks the instance API. Both
raise ``RelayError`` subclasses for failures.
"""

from typing import Any, Dict, List, Optional, Protocol

from relay_backend.instance_service import InstanceService
from relay_backend.transport.chunking import Chunk


class InstanceGateway(Protocol):
    instance_id: str

    async def list_platforms(self, force_name: Optional[str] = None) -> List[Dict[str, Any]]: ...

    async def lock_platform(self, name: str, force_name: str, owner: Optional[str] = None) -> Dict[str, Any]: ...

    async def unlock_platform(self, name: str) -> int: ...

    async def queue_export(self, name: str, force_name: str, transfer_id: Optional[str] = None) -> str: ...

    async def job_status(self, job_id: str) -> Dict[str, Any]: ...

    async def get_export(self, job_id: str) -> Dict[str, Any]: ...

    async def begin_import_session(
        self, session_id: str, total: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]: ...

    async def send_chunk(self, chunk: Chunk) -> Dict[str, Any]: ...

    async def finalize_import_session(
        self,
        session_id: str,
        *,
        checksum: Optional[str] = None,
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str: ...

    async def activate_import(self, job_id: str) -> Dict[str, Any]: ...

    async def validation_result(self, job_id: str) -> Optional[Dict[str, Any]]: ...

    async def delete_platform(self, name: str, force_name: str) -> bool: ...


class LocalInstanceGateway:
    """Gateway to an instance running in this process."""

    def __init__(self, service: InstanceService) -> None:
        self.service = service
        self.instance_id = service.instance_id

    async def list_platforms(self, force_name: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.service.list_platforms(force_name)

    async def lock_platform(self, name: str, force_name: str, owner: Optional[str] = None) -> Dict[str, Any]:
        return self.service.lock_platform(name, force_name, owner)

    async def unlock_platform(self, name: str) -> int:
        return self.service.unlock_platform(name)

    async def queue_export(self, name: str, force_name: str, transfer_id: Optional[str] = None) -> str:
        return self.service.queue_export(name, force_name, transfer_id)

    async def job_status(self, job_id: str) -> Dict[str, Any]:
        return self.service.job_status(job_id)

    async def get_export(self, job_id: str) -> Dict[str, Any]:
        return self.service.get_export(job_id)

    async def begin_import_session(
        self, session_id: str, total: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return self.service.begin_import_session(session_id, total, metadata)

    async def send_chunk(self, chunk: Chunk) -> Dict[str, Any]:
        return self.service.receive_chunk(chunk)

    async def finalize_import_session(
        self,
        session_id: str,
        *,
        checksum: Optional[str] = None,
        platform_name: Optional[str] = None,
        force_name: str = "player",
        transfer_id: Optional[str] = None,
    ) -> str:
        return self.service.finalize_import_session(
            session_id,
            checksum=checksum,
            platform_name=platform_name,
            force_name=force_name,
            transfer_id=transfer_id,
        )

    async def activate_import(self, job_id: str) -> Dict[str, Any]:
        return self.service.activate_import(job_id)

    async def validation_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.service.validation_result(job_id)

    async def delete_platform(self, name: str, force_name: str) -> bool:
        return self.service.delete_platform(name, force_name)
