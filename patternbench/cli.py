"""Command-line driver of the interleaved write benchmark."""

from __future__ import annotations

import argparse
import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TextIO

from patternbench.comm import Communicator, run_parallel
from patternbench.patternio import (
    GIGABYTE,
    KILOBYTE,
    MAX_LOCAL_SIZE,
    MEGABYTE,
    PatternIO,
    PatternPOSIX,
    PatternPOSIXAligned,
    PatternPOSIXUnique,
    PatternViewCollective,
    PatternViewIndependent,
)

DEFAULT_FILENAME = "interleaved_file"
DEFAULT_FILE_SIZE = 20 * GIGABYTE
DEFAULT_TRIALS = 5
DEFAULT_STEP = 64 * KILOBYTE

PATTERNS = (
    "posix",
    "posix-aligned",
    "posix-unique",
    "view-independent",
    "view-collective",
)

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMG]?)B?\s*$", re.IGNORECASE)
_UNITS = {"": 1, "K": KILOBYTE, "M": MEGABYTE, "G": GIGABYTE}


@dataclass(frozen=True)
class TrialResult:
    """Timing of one trial of one transfer size, as seen by one rank."""

    transfer_size: int
    trial: int
    seconds: float
    local_seconds: float
    rate: float


def _rate(file_size: int, seconds: float) -> float:
    if seconds <= 0.0:
        return float("inf")
    return (file_size / GIGABYTE) / seconds


def run_benchmark(
    comm: Communicator,
    pattern: PatternIO,
    filename: str,
    transfer_sizes: Iterable[int],
    file_size: int,
    ntrials: int = DEFAULT_TRIALS,
    out: TextIO | None = None,
) -> list[TrialResult]:
    """Time ``pattern`` writing ``file_size`` bytes for every transfer size.

    Every rank of the group must call this. Rank 0 prints a startup line
    and, for each trial, the transfer size and the rate in GB/s, and
    removes the file after each trial.
    """
    from patternbench.timer import Timer

    sizes = list(transfer_sizes)
    if not sizes:
        raise ValueError("at least one transfer size is needed")
    if any(size <= 0 for size in sizes):
        raise ValueError("transfer sizes must be positive")
    if ntrials < 1:
        raise ValueError(f"number of trials must be positive, got {ntrials}")
    if file_size <= 0:
        raise ValueError(f"file size must be positive, got {file_size}")
    stream = sys.stdout if out is None else out
    root = comm.rank == 0

    data = bytes([comm.rank % 256]) * max(sizes)
    comm.barrier()
    if root:
        print(f"Startup Proc[{comm.rank}]", file=stream)

    local, synced = Timer(), Timer()
    results: list[TrialResult] = []
    for transfer_size in sizes:
        for trial in range(ntrials):
            pattern.create_file(filename, 40, MEGABYTE)
            comm.barrier()
            local.reset()
            local.start()
            synced.reset()
            synced.start()
            pattern.write_interleaved(data, transfer_size, file_size)
            pattern.close_file()
            local.stop()
            comm.barrier()
            synced.stop()
            if root:
                try:
                    pattern.delete_file(filename)
                except OSError:
                    print(f"could not delete file [{filename}]", file=sys.stderr)
            comm.barrier()
            seconds = synced.real_time()
            rate = _rate(file_size, seconds)
            results.append(
                TrialResult(transfer_size, trial, seconds, local.real_time(), rate)
            )
            if root:
                print(f"{transfer_size} {rate:5.4f}", file=stream)
    return results


def _make_pattern(name: str, comm: Communicator, out: TextIO) -> PatternIO:
    if name == "posix":
        return PatternPOSIX(comm)
    if name == "posix-aligned":
        return PatternPOSIXAligned(comm, out)
    if name == "posix-unique":
        return PatternPOSIXUnique(comm)
    if name == "view-independent":
        return PatternViewIndependent(comm)
    if name == "view-collective":
        return PatternViewCollective(comm)
    raise ValueError(f"unknown pattern {name!r}")


def _parse_size(text: str) -> int:
    match = _SIZE_RE.match(text)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid size {text!r}")
    return int(match.group(1)) * _UNITS[match.group(2).upper()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patternbench",
        description="Benchmark interleaved writes of a group of ranks to a shared file.",
    )
    parser.add_argument("--pattern", choices=PATTERNS, default="posix")
    parser.add_argument("--nprocs", type=int, default=1, help="number of ranks")
    parser.add_argument("--filename", default=DEFAULT_FILENAME)
    parser.add_argument("--file-size", type=_parse_size, default=DEFAULT_FILE_SIZE)
    parser.add_argument("--min-transfer", type=_parse_size, default=DEFAULT_STEP)
    parser.add_argument("--max-transfer", type=_parse_size, default=MAX_LOCAL_SIZE)
    parser.add_argument("--step", type=_parse_size, default=DEFAULT_STEP)
    parser.add_argument("--trials", type=int, default=DEFAULT_TRIALS)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the benchmark from command-line arguments."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.nprocs < 1:
        parser.error("--nprocs must be at least 1")
    if args.trials < 1:
        parser.error("--trials must be at least 1")
    if args.min_transfer < 1 or args.step < 1:
        parser.error("transfer sizes and step must be positive")
    if args.max_transfer < args.min_transfer:
        parser.error("--max-transfer must not be below --min-transfer")
    if args.file_size < 1:
        parser.error("--file-size must be positive")

    sizes = range(args.min_transfer, args.max_transfer + 1, args.step)
    out = sys.stdout

    def rank_main(comm: Communicator) -> list[TrialResult]:
        pattern = _make_pattern(args.pattern, comm, out)
        return run_benchmark(
            comm, pattern, args.filename, sizes, args.file_size, args.trials, out
        )

    run_parallel(args.nprocs, rank_main)
    return 0


if __name__ == "__main__":
    sys.exit(main())