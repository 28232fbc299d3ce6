"""Pydantic schemas for the storage backend contracts."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .audio.types import StorageStatus


class UploadResponse(BaseModel):
    accepted: bool
    upload_id: Optional[str] = None
    message: Optional[str] = None


class ChunkStatus(BaseModel):
    chunk_id: str
    status: StorageStatus
    content_address: Optional[str] = None
    error: Optional[str] = None


class StreamStatusResponse(BaseModel):
    stream_id: Optional[str] = None
    chunks: List[ChunkStatus] = Field(default_factory=list)

    def find(self, chunk_id: str) -> Optional[ChunkStatus]:
        for item in self.chunks:
            if item.chunk_id == chunk_id:
                return item
        return None


class ChunkDescriptor(BaseModel):
    """One stored chunk as reported by the stream metadata provider."""

    sequence: int = Field(ge=0)
    url: str
    duration: float = Field(ge=0.0)
    is_final: bool = False
    chunk_id: Optional[str] = None


class StreamChunksResponse(BaseModel):
    stream_id: Optional[str] = None
    chunks: List[ChunkDescriptor] = Field(default_factory=list)


__all__ = [
    "ChunkDescriptor",
    "ChunkStatus",
    "StreamChunksResponse",
    "StreamStatusResponse",
    "UploadResponse",
]
