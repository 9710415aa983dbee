# patternbench

patternbench measures how fast a filesystem takes **interleaved** writes
from a group of writers to one shared file. It models the access pattern
you get when several ranks write a 1D-decomposed dataset, such as a
particle list or chunked 3D data. Each rank writes a block of
`transfer_size` bytes at offset `rank * transfer_size`. It then skips
ahead by `nprocs * transfer_size` and writes again, until the file
reaches the requested size.

patternbench needs only the standard library.

## Installing

```
pip install .
```

## Running the benchmark

```
patternbench --help
```

Options:

| Option | Default | Meaning |
|---|---|---|
| `--pattern` | `posix` | One of `posix`, `posix-aligned`, `posix-unique`, `view-independent`, `view-collective` |
| `--nprocs` | `1` | Number of ranks |
| `--filename` | `interleaved_file` | File to write |
| `--file-size` | `20G` | Size the file is written up to |
| `--min-transfer` | `64K` | Smallest transfer size |
| `--max-transfer` | `32M` | Largest transfer size |
| `--step` | `64K` | Increment between transfer sizes |
| `--trials` | `5` | Trials per transfer size |

Sizes are whole numbers with an optional `K`, `M` or `G` suffix (binary
units) and an optional trailing `B`, e.g. `512K`, `4MB`, `1G`.

For every transfer size and trial, the benchmark:

1. creates the file on every rank;
2. times the interleaved write and the close;
3. has rank 0 remove the file;
4. has rank 0 print the transfer size and the bandwidth in GB/s.

Before the first trial rank 0 prints `Startup Proc[0]`. With
`posix-aligned`, rank 0 also prints the slot size used (followed by a
space) before each result line.

## Write patterns

The patterns live in `patternbench.patternio`:

| Class | What it does |
|---|---|
| `PatternPOSIX` | Seek-and-write to one shared file |
| `PatternPOSIXAligned` | Transfers larger than 1 MiB get slots padded to 1 MiB boundaries, which leaves holes in the file |
| `PatternPOSIXUnique` | One file per rank (`<filename>NNN`), written sequentially, as a baseline |
| `PatternViewIndependent` | Writes through a subarray view of the shared file, each rank on its own |
| `PatternViewCollective` | Writes through the same view, with a barrier after every write |

Each has `create_file`, `write_interleaved`, `close_file` and
`delete_file`, and can be used as a context manager that closes the file.

`interleaved_offsets(rank, nprocs, transfer_size, file_size)` yields the
offsets one rank writes to; `aligned_transfer_size(transfer_size)` rounds
a size up to a whole number of MiB.

## Using the pieces directly

```python
import sys

from patternbench.cli import run_benchmark
from patternbench.comm import run_parallel
from patternbench.patternio import PatternPOSIX

def worker(comm):
    return run_benchmark(comm, PatternPOSIX(comm), "interleaved_file",
                         [64 * 1024], 16 * 1024 * 1024, 2, sys.stdout)

results = run_parallel(4, worker)
```

`run_benchmark` returns a list of `TrialResult` records (transfer size,
trial, synchronised seconds, local seconds, rate) for the calling rank.

### Modules

- `patternbench.comm` — `run_parallel(nprocs, target, *args)` runs
  `target(comm, *args)` on each rank and returns the results by rank; if
  a rank raises, the group is aborted and the error is raised in the
  caller. `Communicator` offers `send`/`recv`, `isend`/`irecv` returning
  `Request` objects (`wait`, `test`), `iprobe`, `barrier`, `bcast`,
  `gather`, `allgather`, `scatter`, `alltoall`, `reduce`, `proc_layout`
  and `cart_coords`. `wait_all`, `wait_any` and `dims_create` are module
  functions.
- `patternbench.parallelio` — `ParallelFile`, one rank's handle on a
  shared file, with views made by `set_pattern_block` (subarray) or
  `set_pattern_strided`, written with `write_independent` or
  `write_collective`. `subarray_offsets` and `strided_offsets` return the
  `(offset, length)` runs a pattern selects.
- `patternbench.timer` — `Timer`, a stopwatch whose real time adds up
  across start/stop pairs; `report` prints a one-line summary.
- `patternbench.timeval` — `Timeval` (seconds and microseconds) with
  conversion, addition, subtraction and comparison helpers.

## What it does not do

- Ranks are threads inside one Python process; there is no way to run
  them as separate processes or across machines.
- Filesystem striping is not set up: the `nstripes` and `stripesize`
  arguments of `create_file` are accepted and ignored.
- `ParallelFile.set_info` only records hints; nothing acts on them.
- Writes through a view are not coalesced; collective writes differ from
  independent ones only by the barrier that follows them.