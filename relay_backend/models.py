"""Request and response models for the relay HTTP API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LockRequest(BaseModel):
    """Lock a platform ahead of an export."""

    force: str = "player"
    owner: Optional[str] = None  # Transfer id holding the lock


class ExportRequest(BaseModel):
    platform_name: str
    force: str = "player"
    transfer_id: Optional[str] = None


class ExportFileRequest(BaseModel):
    filename: Optional[str] = None  # Defaults to <platform>_<tick>.json


class CloneRequest(BaseModel):
    dest_name: str
    force: str = "player"


class ImportRequest(BaseModel):
    """Direct (unchunked) import of an envelope or manifest."""

    data: Dict[str, Any]
    platform_name: Optional[str] = None
    force: str = "player"
    transfer_id: Optional[str] = None


class ImportSessionRequest(BaseModel):
    session_id: str
    total: int = Field(ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkPayload(BaseModel):
    index: int = Field(ge=1)
    total: int = Field(ge=1)
    data: str


class FinalizeRequest(BaseModel):
    checksum: Optional[str] = None
    platform_name: Optional[str] = None
    force: str = "player"
    transfer_id: Optional[str] = None


class PlatformInfo(BaseModel):
    name: str
    force: str
    index: int
    paused: bool
    hidden: bool
    locked: bool
    object_count: int


class JobAccepted(BaseModel):
    job_id: str


class TransferCreateRequest(BaseModel):
    """Start moving a platform from one instance to another."""

    source_instance: str
    dest_instance: str
    platform_name: str
    force: str = "player"
    keep_source: bool = False  # Unlock instead of deleting the source
    dest_platform_name: Optional[str] = None


class TransferResponse(BaseModel):
    transfer_id: str
    source_instance: str
    dest_instance: str
    platform_name: str
    force_name: str
    status: str
    keep_source: bool
    export_job_id: Optional[str] = None
    import_job_id: Optional[str] = None
    dest_platform_name: Optional[str] = None
    phase_timings: Dict[str, float] = Field(default_factory=dict)
    last_phase: Optional[str] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    validation: Optional[Dict[str, Any]] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)


class TransferList(BaseModel):
    transfers: List[TransferResponse]
    count: int
