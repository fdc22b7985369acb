"""Chunked transport between relay instances."""

from relay_backend.transport.chunking import (
    Chunk,
    ChunkReceiver,
    checksum,
    choose_chunk_size,
    decode_payload,
    encode_payload,
    split_payload,
)
from relay_backend.transport.sender import ChunkSender

__all__ = [
    "Chunk",
    "ChunkReceiver",
    "ChunkSender",
    "checksum",
    "choose_chunk_size",
    "decode_payload",
    "encode_payload",
    "split_payload",
]
