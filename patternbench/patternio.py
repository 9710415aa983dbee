"""Interleaved shared-file write patterns used by the benchmark.

Each rank writes ``transfer_size`` bytes at ``rank * transfer_size`` and
then skips ahead by ``nprocs * transfer_size`` until the file reaches
``file_size`` bytes. The classes differ only in how they write.
"""

from __future__ import annotations

import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import TextIO

from patternbench.comm import Communicator
from patternbench.parallelio import ParallelFile

KILOBYTE = 1024
MEGABYTE = 1024 * KILOBYTE
GIGABYTE = 1024 * MEGABYTE
MAX_LOCAL_SIZE = 32 * MEGABYTE

Buffer = bytes | bytearray | memoryview


def interleaved_offsets(
    rank: int, nprocs: int, transfer_size: int, file_size: int
) -> Iterator[int]:
    """Yield this rank's write offsets; the first is always yielded."""
    if transfer_size <= 0:
        raise ValueError(f"transfer size must be positive, got {transfer_size}")
    if nprocs < 1 or not 0 <= rank < nprocs:
        raise ValueError(f"rank {rank} outside group of {nprocs}")
    return _offsets(rank * transfer_size, nprocs * transfer_size, file_size)


def _offsets(offset: int, step: int, file_size: int) -> Iterator[int]:
    while True:
        yield offset
        offset += step
        if offset >= file_size:
            return


def aligned_transfer_size(transfer_size: int) -> int:
    """Round ``transfer_size`` up to a whole number of megabytes."""
    if transfer_size < 0:
        raise ValueError(f"transfer size must not be negative, got {transfer_size}")
    return -(-transfer_size // MEGABYTE) * MEGABYTE


def _data_view(data: Buffer, size: int) -> memoryview:
    if size <= 0:
        raise ValueError(f"transfer size must be positive, got {size}")
    view = memoryview(data).cast("B")
    if len(view) < size:
        raise ValueError(f"data holds {len(view)} bytes, fewer than the transfer size {size}")
    return view[:size]


def _write_at(fd: int, offset: int, view: memoryview) -> None:
    os.lseek(fd, offset, os.SEEK_SET)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class PatternIO(ABC):
    """Base of the interleaved write benchmarks."""

    def __init__(self, comm: Communicator) -> None:
        self.comm = comm

    @abstractmethod
    def create_file(self, filename: str, nstripes: int = 0, stripesize: int = -1) -> None:
        """Open ``filename`` for writing on every rank."""

    @abstractmethod
    def close_file(self) -> None:
        """Close the file and release its resources."""

    def delete_file(self, filename: str) -> None:
        """Remove the file from disk."""
        os.unlink(filename)

    @abstractmethod
    def write_interleaved(self, data: Buffer, transfer_size: int, file_size: int) -> None:
        """Write the interleaved pattern until the file reaches ``file_size``."""

    def __enter__(self) -> PatternIO:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close_file()


class PatternPOSIX(PatternIO):
    """Interleaved writes with seek and write on one shared file."""

    def __init__(self, comm: Communicator) -> None:
        super().__init__(comm)
        self._fd: int | None = None

    def _open(self, path: str) -> None:
        self.close_file()
        self._fd = os.open(path, os.O_CREAT | os.O_RDWR | getattr(os, "O_BINARY", 0), 0o664)

    def create_file(self, filename: str, nstripes: int = 0, stripesize: int = -1) -> None:
        self._open(filename)
        self.comm.barrier()

    def close_file(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def _require_fd(self) -> int:
        if self._fd is None:
            raise ValueError("no file is open")
        return self._fd

    def _write_to_offset(self, data: Buffer, offset: int, size: int) -> None:
        _write_at(self._require_fd(), offset, _data_view(data, size))

    def _write_to_offset_chunked(self, data: Buffer, offset: int, size: int) -> None:
        """Write ``size`` bytes at ``offset`` in pieces of at most a megabyte.

        Every piece is taken from the start of ``data``.
        """
        fd = self._require_fd()
        view = _data_view(data, min(size, MEGABYTE))
        os.lseek(fd, offset, os.SEEK_SET)
        while size > 0:
            piece = view[:min(size, MEGABYTE)]
            while piece:
                piece = piece[os.write(fd, piece):]
            size -= MEGABYTE

    def write_interleaved(self, data: Buffer, transfer_size: int, file_size: int) -> None:
        offsets = interleaved_offsets(self.comm.rank, self.comm.nprocs, transfer_size, file_size)
        for offset in offsets:
            self._write_to_offset(data, offset, transfer_size)


class PatternPOSIXAligned(PatternPOSIX):
    """Interleaved writes whose slots are padded to megabyte boundaries.

    Transfers larger than a megabyte start on megabyte-aligned offsets,
    leaving holes in the file; smaller ones are packed as usual.
    """

    def __init__(self, comm: Communicator, out: TextIO | None = None) -> None:
        super().__init__(comm)
        self.out = out

    def write_interleaved(self, data: Buffer, transfer_size: int, file_size: int) -> None:
        aligned = aligned_transfer_size(transfer_size)
        slot = aligned if transfer_size > MEGABYTE else transfer_size
        if self.comm.rank == 0:
            print(slot, end=" ", file=self.out if self.out is not None else sys.stdout)
        for offset in interleaved_offsets(self.comm.rank, self.comm.nprocs, slot, file_size):
            self._write_to_offset(data, offset, transfer_size)


class PatternPOSIXUnique(PatternPOSIX):
    """One file per rank, written sequentially, as a baseline."""

    def _rank_path(self, filename: str) -> str:
        return f"{filename}{self.comm.rank:03d}"

    def create_file(self, filename: str, nstripes: int = 0, stripesize: int = -1) -> None:
        self._open(self._rank_path(filename))
        self.comm.barrier()

    def delete_file(self, filename: str) -> None:
        """Remove this rank's own file."""
        os.unlink(self._rank_path(filename))

    def write_interleaved(self, data: Buffer, transfer_size: int, file_size: int) -> None:
        offsets = interleaved_offsets(self.comm.rank, self.comm.nprocs, transfer_size, file_size)
        for index, _ in enumerate(offsets):
            self._write_to_offset(data, index * transfer_size, transfer_size)


class PatternViewIO(PatternIO):
    """Interleaved writes through a subarray view of a shared file."""

    def __init__(self, comm: Communicator) -> None:
        super().__init__(comm)
        self._file: ParallelFile | None = None

    def create_file(self, filename: str, nstripes: int = 0, stripesize: int = -1) -> None:
        self.close_file()
        self.comm.barrier()
        self._file = ParallelFile(self.comm, filename)
        self.comm.barrier()

    def close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    @abstractmethod
    def _write(self, file: ParallelFile, offset: int, chunk: memoryview) -> None:
        """Write one transfer at element ``offset`` of the view."""

    def write_interleaved(self, data: Buffer, transfer_size: int, file_size: int) -> None:
        if self._file is None:
            raise ValueError("no file is open")
        chunk = _data_view(data, transfer_size)
        nprocs, rank = self.comm.nprocs, self.comm.rank
        self._file.set_pattern_block(nprocs * transfer_size, transfer_size, rank * transfer_size, 1)
        view_offset = 0
        written = 0
        while True:
            self._write(self._file, view_offset, chunk)
            view_offset += transfer_size
            written += transfer_size * nprocs
            if written >= file_size:
                return


class PatternViewIndependent(PatternViewIO):
    """View-based interleaved writes, each rank writing on its own."""

    def _write(self, file: ParallelFile, offset: int, chunk: memoryview) -> None:
        file.write_independent(offset, chunk)


class PatternViewCollective(PatternViewIO):
    """View-based interleaved writes taken in step by all ranks."""

    def _write(self, file: ParallelFile, offset: int, chunk: memoryview) -> None:
        file.write_collective(offset, chunk)