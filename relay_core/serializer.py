"""Manifest construction and the compressed envelope format.

Envelope layout::

    {
        "compressed": true,
        "compression": "deflate",
        "payload": "<base64 of deflated manifest JSON>",
        "platform_name": "Alpha",
        "tick": 1234,
        "timestamp": "2026-01-01T00:00:00+00:00",
        "stats": {"entities": ..., "items": ..., "fluids": ..., "tiles": ..., "size_bytes": ...},
        "verification": {"item_counts": {...}, "fluid_counts": {...}}
    }

``verification`` always travels uncompressed so a receiver can check
feasibility before inflating the payload.
"""

import base64
import logging
import zlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import orjson

from relay_core import __version__
from relay_core.exceptions import StructuralError
from relay_core.verification import Verification, aggregate

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3
COMPRESSION = "deflate"


def compress_text(text: str) -> str:
    return base64.b64encode(zlib.compress(text.encode("utf-8"), 9)).decode("ascii")


def decompress_text(data: str) -> str:
    try:
        return zlib.decompress(base64.b64decode(data)).decode("utf-8")
    except (ValueError, zlib.error) as e:
        raise StructuralError(f"Payload could not be decompressed: {e}") from e


def build_manifest(
    *,
    platform: Dict[str, Any],
    objects: List[Dict[str, Any]],
    tiles: List[Dict[str, Any]],
    tick: int,
    source_version: str,
    schedule: Optional[Dict[str, Any]] = None,
    frozen_states: Optional[Dict[str, bool]] = None,
) -> Dict[str, Any]:
    """Assemble an export manifest; verification is derived from *objects*."""
    verification = aggregate(objects)
    return {
        "schema_version": SCHEMA_VERSION,
        "source_version": source_version,
        "relay_version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tick": tick,
        "platform": dict(platform),
        "schedule": schedule,
        "metadata": {
            "object_count": len(objects),
            "tile_count": len(tiles),
            "item_total": verification.total_items,
            "fluid_total": verification.total_fluids,
        },
        "objects": objects,
        "tiles": tiles,
        "frozen_states": {str(k): v for k, v in (frozen_states or {}).items()},
        "verification": verification.to_dict(),
    }


def manifest_stats(manifest: Dict[str, Any], size_bytes: int) -> Dict[str, Any]:
    verification = Verification.from_dict(manifest.get("verification") or {})
    return {
        "entities": len(manifest.get("objects") or []),
        "items": verification.total_items,
        "fluids": round(verification.total_fluids, 3),
        "tiles": len(manifest.get("tiles") or []),
        "size_bytes": size_bytes,
    }


def encode_envelope(manifest: Dict[str, Any], *, compress: bool = True) -> Dict[str, Any]:
    """Wrap a manifest in the file/wire envelope."""
    raw = orjson.dumps(manifest).decode("utf-8")
    payload = compress_text(raw) if compress else raw
    envelope = {
        "compressed": compress,
        "compression": COMPRESSION if compress else "none",
        "payload": payload,
        "platform_name": (manifest.get("platform") or {}).get("name"),
        "tick": manifest.get("tick"),
        "timestamp": manifest.get("timestamp"),
        "stats": manifest_stats(manifest, len(raw)),
        "verification": manifest.get("verification") or {},
    }
    if compress:
        logger.debug(
            "Compressed manifest for %s: %d -> %d bytes",
            envelope["platform_name"],
            len(raw),
            len(payload),
        )
    return envelope


def is_envelope(data: Dict[str, Any]) -> bool:
    return isinstance(data, dict) and "payload" in data and "compressed" in data


def decode_envelope(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the manifest inside an envelope (or *data* itself if it is a manifest)."""
    if not isinstance(data, dict):
        raise StructuralError("Manifest must be a JSON object")
    if not is_envelope(data):
        if "objects" not in data:
            raise StructuralError("Manifest has no objects")
        return data

    payload = data["payload"]
    if data.get("compressed"):
        if data.get("compression", COMPRESSION) != COMPRESSION:
            raise StructuralError(f"Unsupported compression: {data.get('compression')}")
        payload = decompress_text(payload)
    try:
        manifest = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise StructuralError(f"Manifest payload is not valid JSON: {e}") from e
    if not isinstance(manifest, dict) or "objects" not in manifest:
        raise StructuralError("Manifest has no objects")
    if not manifest.get("verification") and data.get("verification"):
        manifest["verification"] = data["verification"]
    return manifest
