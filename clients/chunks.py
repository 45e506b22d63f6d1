# clients/chunks.py
"""
Splitting of large payloads into ordered parts and reassembly on receipt.

Parts may arrive in any order. The receiver keeps one ChunkSet per transfer,
keyed by file name and declared size.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

DEFAULT_CHUNK_SIZE = 256 * 1024  # Klartext pro Chunk, bleibt nach 2x Base64 unter 1 MiB
MAX_TOTAL_CHUNKS = 65536         # 16 GiB bei Standard-Chunkgröße


class ChunkError(ValueError):
    """A chunk contradicts its transfer (bad index, total or size)."""
    pass


@dataclass(frozen=True)
class Part:
    index: int
    total: int
    data: bytes


@dataclass(frozen=True)
class FileChunk:
    file_name: str
    file_size: int
    index: int
    total: int
    data: bytes


@dataclass
class ChunkSet:
    file_id: str
    total_chunks: int
    chunks: List[Optional[bytes]] = field(default_factory=list)
    received_count: int = 0


def file_id(file_name: str, file_size: int) -> str:
    # Kein Content-Hash: gleichnamige, gleich große Transfers kollidieren
    return f"{file_name}:{file_size}"


def split(payload: bytes, max_chunk_size: int) -> List[Part]:
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    total = max(1, math.ceil(len(payload) / max_chunk_size))
    return [
        Part(index=i, total=total, data=payload[i * max_chunk_size:(i + 1) * max_chunk_size])
        for i in range(total)
    ]


def split_file(file_name: str, payload: bytes, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[FileChunk]:
    return [
        FileChunk(file_name=file_name, file_size=len(payload),
                  index=p.index, total=p.total, data=p.data)
        for p in split(payload, max_chunk_size)
    ]


class ChunkAssembler:
    def __init__(self):
        self._sets: Dict[str, ChunkSet] = {}

    def ingest(self, chunk: FileChunk) -> Optional[bytes]:
        """
        Stores one chunk and returns the full payload once every slot is filled.

        A repeated index overwrites its slot but is counted only once.

        Raises:
            ChunkError: index outside [0, total), total differing from the
                transfer's first chunk, or reassembled length != file_size.
        """
        if chunk.file_size < 0:
            raise ChunkError("file size must not be negative")
        if chunk.total <= 0:
            raise ChunkError("total must be positive")
        # Jeder Chunk trägt mindestens ein Byte, außer bei leeren Dateien
        if chunk.total > min(max(1, chunk.file_size), MAX_TOTAL_CHUNKS):
            raise ChunkError(f"chunk total {chunk.total} too large")
        if not 0 <= chunk.index < chunk.total:
            raise ChunkError(f"chunk index {chunk.index} out of range")

        fid = file_id(chunk.file_name, chunk.file_size)
        cs = self._sets.get(fid)
        if cs is None:
            cs = ChunkSet(file_id=fid, total_chunks=chunk.total,
                          chunks=[None] * chunk.total)
            self._sets[fid] = cs
        elif cs.total_chunks != chunk.total:
            raise ChunkError(f"chunk total {chunk.total} != {cs.total_chunks}")

        if cs.chunks[chunk.index] is None:
            cs.received_count += 1
        cs.chunks[chunk.index] = chunk.data

        if cs.received_count < cs.total_chunks:
            return None

        del self._sets[fid]
        payload = b"".join(cs.chunks)
        if len(payload) != chunk.file_size:
            raise ChunkError("reassembled size does not match declared size")
        return payload

    def progress(self, fid: str) -> Optional[Tuple[int, int]]:
        cs = self._sets.get(fid)
        if cs is None:
            return None
        return cs.received_count, cs.total_chunks

    def discard(self, fid: str) -> None:
        self._sets.pop(fid, None)

    def __len__(self):
        return len(self._sets)
