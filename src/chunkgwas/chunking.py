# chunking.py

import math
from dataclasses import dataclass
from typing import Tuple

from chunkgwas.errors import ConfigurationError, InvariantViolation
from chunkgwas.variant_processing import Position


@dataclass(frozen=True)
class Region:
    chrom: str
    start: int
    end: int

    def __str__(self):
        return format_region(self)


def format_region(region):
    """chrom:start-end, the form tabix-style region queries expect"""
    return f"{region.chrom}:{region.start}-{region.end}"


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous slice of the position stream.
    `chunk_id` is the zero-padded form of `index`, so sorting ids as strings
    gives the same order as sorting the indexes.
    """
    index: int
    chunk_id: str
    positions: Tuple[Position, ...]

    def __len__(self):
        return len(self.positions)


def check_chunk_size(chunk_size):
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be a positive integer, got {chunk_size!r}")


def count_chunks(n_positions, chunk_size):
    check_chunk_size(chunk_size)
    return math.ceil(n_positions / chunk_size)


def chunk_id_width(n_chunks):
    """Digits needed to write the largest chunk index."""
    return max(1, len(str(max(n_chunks - 1, 0))))


def split_positions(positions, chunk_size, n_positions=None):
    """
    Split an ordered position stream into chunks of `chunk_size` positions.
    The last chunk holds the remainder. When `n_positions` is not given the
    stream is read into memory first to size the chunk ids.
    """
    check_chunk_size(chunk_size)
    if n_positions is None:
        positions = list(positions)
        n_positions = len(positions)
    n_chunks = count_chunks(n_positions, chunk_size)
    return _iter_chunks(positions, chunk_size, n_chunks, chunk_id_width(n_chunks))


def _iter_chunks(positions, chunk_size, n_chunks, width):
    batch = []
    index = 0
    for position in positions:
        batch.append(position)
        if len(batch) == chunk_size:
            yield _make_chunk(index, width, n_chunks, batch)
            index += 1
            batch = []
    if batch:
        yield _make_chunk(index, width, n_chunks, batch)
        index += 1
    if index != n_chunks:
        raise InvariantViolation(f"Expected {n_chunks} chunks but the source produced {index}")


def _make_chunk(index, width, n_chunks, batch):
    # a longer source than counted would break the id ordering
    if index >= n_chunks:
        raise InvariantViolation(f"Source produced more than the {n_chunks} chunks it was sized for")
    return Chunk(index, str(index).zfill(width), tuple(batch))


def resolve_regions(chunk):
    """
    One Region per chromosome run in the chunk, in the order the
    chromosomes appear. A single-chromosome chunk gives its own span.
    """
    if not chunk.positions:
        raise InvariantViolation(f"Chunk {chunk.chunk_id} is empty")

    regions = []
    seen = set()
    first = chunk.positions[0]
    chrom, start, end = first.chrom, first.pos, first.pos
    for position in chunk.positions[1:]:
        if position.chrom == chrom:
            end = position.pos
            continue
        regions.append(_close_run(chunk, chrom, start, end, seen))
        chrom, start, end = position.chrom, position.pos, position.pos
    regions.append(_close_run(chunk, chrom, start, end, seen))
    return regions


def _close_run(chunk, chrom, start, end, seen):
    if chrom in seen:
        raise InvariantViolation(
            f"Chunk {chunk.chunk_id}: chromosome {chrom} is not contiguous in the variant file")
    if start > end:
        raise InvariantViolation(
            f"Chunk {chunk.chunk_id}: positions on {chrom} are not sorted ({start} > {end})")
    seen.add(chrom)
    return Region(chrom, start, end)
