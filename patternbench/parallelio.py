"""Shared-file writes through a tiled file view, one handle per rank.

A :class:`ParallelFile` is opened by every rank of a group. A view made
from a subarray or strided pattern maps each rank's contiguous stream of
elements onto the positions that rank owns in the shared file. The
pattern is tiled end to end, each tile spanning the pattern's extent.
"""

from __future__ import annotations

import bisect
import itertools
import math
import os
from collections.abc import Iterator, Sequence
from typing import Union

from patternbench.comm import Communicator

Run = tuple[int, int]
Dims = Union[int, Sequence[int]]


def _as_dims(value: Dims) -> tuple[int, ...]:
    if isinstance(value, int):
        return (value,)
    return tuple(int(v) for v in value)


def _merge(runs: list[Run]) -> list[Run]:
    merged: list[Run] = []
    for start, length in runs:
        if length == 0:
            continue
        if merged and merged[-1][0] + merged[-1][1] == start:
            merged[-1] = (merged[-1][0], merged[-1][1] + length)
        else:
            merged.append((start, length))
    return merged


def subarray_offsets(global_size: Dims, local_size: Dims, start_offset: Dims) -> list[Run]:
    """Return the (offset, length) element runs a subarray selects.

    Sizes and offsets may be single integers or one value per dimension,
    the first dimension varying fastest. Runs are in file order and
    adjacent runs are merged.
    """
    g, l, s = _as_dims(global_size), _as_dims(local_size), _as_dims(start_offset)
    if not g or not len(g) == len(l) == len(s):
        raise ValueError("global, local and start sizes need the same number of dimensions")
    for gd, ld, sd in zip(g, l, s):
        if gd < 1 or ld < 1 or sd < 0 or sd + ld > gd:
            raise ValueError(
                f"subarray of {ld} elements at {sd} does not fit in dimension of {gd}"
            )
    strides = [1]
    for extent in g[:-1]:
        strides.append(strides[-1] * extent)
    outer_dims = list(range(len(g) - 1, 0, -1))
    runs = []
    for index in itertools.product(*(range(s[d], s[d] + l[d]) for d in outer_dims)):
        base = s[0] + sum(i * strides[d] for i, d in zip(index, outer_dims))
        runs.append((base, l[0]))
    return _merge(runs)


def strided_offsets(count: int, block_length: int, stride: int) -> list[Run]:
    """Return the (offset, length) runs of ``count`` blocks spaced ``stride`` apart."""
    if count < 0 or block_length < 0 or stride < 0:
        raise ValueError("count, block length and stride must not be negative")
    return _merge([(i * stride, block_length) for i in range(count)])


def _write_at(fd: int, position: int, view: memoryview) -> None:
    os.lseek(fd, position, os.SEEK_SET)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class ParallelFile:
    """One rank's handle on a file shared by its group."""

    def __init__(self, comm: Communicator, filename: str, create: bool = True) -> None:
        flags = os.O_RDWR | getattr(os, "O_BINARY", 0)
        if create:
            flags |= os.O_CREAT
        self._comm = comm
        self.filename = filename
        self._fd: int | None = os.open(filename, flags, 0o664)
        self.info: dict[str, str] = {}
        self.elem_size = 1
        self._runs: list[Run] | None = None
        self._starts: list[int] = []
        self._tile_size = 0
        self._extent = 0
        comm.barrier()

    @property
    def closed(self) -> bool:
        return self._fd is None

    def _require_open(self) -> int:
        if self._fd is None:
            raise ValueError("I/O operation on closed file")
        return self._fd

    def set_info(self, key: str, value: str) -> None:
        """Record an advisory hint for the file."""
        self._require_open()
        self.info[key] = value

    def _set_view(self, runs: list[Run], extent: int, elem_size: int) -> None:
        if elem_size < 1:
            raise ValueError(f"element size must be positive, got {elem_size}")
        self._require_open()
        self.elem_size = elem_size
        self._runs = runs
        self._extent = extent
        self._starts = list(itertools.accumulate((length for _, length in runs), initial=0))[:-1]
        self._tile_size = sum(length for _, length in runs)

    def set_pattern_block(
        self,
        global_sizes: Dims,
        local_sizes: Dims,
        start_offsets: Dims,
        elem_size: int = 1,
    ) -> None:
        """View the file as tiles of a global array holding this rank's block."""
        runs = subarray_offsets(global_sizes, local_sizes, start_offsets)
        self._set_view(runs, math.prod(_as_dims(global_sizes)), elem_size)

    def set_pattern_strided(
        self, count: int, block_length: int, stride: int, elem_size: int = 1
    ) -> None:
        """View the file as tiles of ``count`` strided blocks."""
        runs = strided_offsets(count, block_length, stride)
        extent = (count - 1) * stride + block_length if count else 0
        self._set_view(runs, extent, elem_size)

    def _pieces(self, offset: int, nbytes: int) -> Iterator[Run]:
        """Yield (byte position, byte count) pieces for a write at ``offset``."""
        es = self.elem_size
        if offset < 0:
            raise ValueError(f"offset must not be negative, got {offset}")
        if nbytes % es:
            raise ValueError(f"data of {nbytes} bytes is not a whole number of {es}-byte elements")
        remaining = nbytes // es
        if self._runs is None:
            if remaining:
                yield offset * es, nbytes
            return
        if remaining and self._tile_size == 0:
            raise ValueError("the file view selects no elements")
        logical = offset
        while remaining > 0:
            tile, within = divmod(logical, self._tile_size)
            index = bisect.bisect_right(self._starts, within) - 1
            run_start, run_length = self._runs[index]
            skip = within - self._starts[index]
            take = min(remaining, run_length - skip)
            yield (tile * self._extent + run_start + skip) * es, take * es
            logical += take
            remaining -= take

    def _write(self, offset: int, data: bytes | bytearray | memoryview) -> None:
        fd = self._require_open()
        view = memoryview(data).cast("B")
        position = 0
        for file_position, count in list(self._pieces(offset, len(view))):
            _write_at(fd, file_position, view[position:position + count])
            position += count

    def write_independent(self, offset: int, data: bytes | bytearray | memoryview) -> None:
        """Write ``data`` at element ``offset`` of this rank's view."""
        self._write(offset, data)

    def write_collective(self, offset: int, data: bytes | bytearray | memoryview) -> None:
        """Write like :meth:`write_independent`; every rank must take part."""
        self._write(offset, data)
        self._comm.barrier()

    def close(self) -> None:
        """Close this rank's handle; closing twice does nothing."""
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> ParallelFile:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()