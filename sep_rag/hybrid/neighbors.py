"""Adjacent chunks of a retrieved chunk within its section."""

from __future__ import annotations

from typing import List

from sep_rag.exceptions import ChunkNotFoundError
from sep_rag.models import NeighborChunk

from .search import ChunkStore


def neighbor_indices(chunk_index: int, num_chunks: int) -> List[int]:
    """Indices of up to two neighbors of ``chunk_index``, ascending.

    The first chunk takes the two that follow it, the last chunk the two
    before it, and any other chunk one on each side.
    """

    if num_chunks <= 1:
        return []
    if chunk_index == 0:
        return [1, 2] if num_chunks > 2 else [1]
    if chunk_index == num_chunks - 1:
        return [chunk_index - 2, chunk_index - 1] if chunk_index >= 2 else [chunk_index - 1]
    return [chunk_index - 1, chunk_index + 1]


def get_chunk_neighbors(store: ChunkStore, chunk_id: str) -> List[NeighborChunk]:
    position = store.get_chunk_position(chunk_id)
    if position is None:
        raise ChunkNotFoundError(f"Chunk not found: {chunk_id}")

    indices = neighbor_indices(position.chunk_index, position.num_chunks)
    if not indices:
        return []
    neighbors = store.get_section_chunks(position.section_id, indices)
    return sorted(neighbors, key=lambda chunk: chunk.chunk_index)


__all__ = ["get_chunk_neighbors", "neighbor_indices"]
