"""In-process message passing between ranks that run as threads.

A group of ranks is started with :func:`run_parallel`; each rank receives
a :class:`Communicator` that offers point-to-point messages, non-blocking
requests and collective operations over the whole group.
"""

from __future__ import annotations

import copy
import functools
import math
import operator
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

ANY_SOURCE = -1
ANY_TAG = -1

_POLL_INTERVAL = 0.05


class _Aborted(RuntimeError):
    """Raised in a rank when another rank of its group has failed."""


@dataclass
class _Message:
    source: int
    tag: int
    data: Any


class _World:
    """State shared by every rank of one group."""

    def __init__(self, nprocs: int) -> None:
        if nprocs < 1:
            raise ValueError(f"a group needs at least one rank, got {nprocs}")
        self.nprocs = nprocs
        self.barrier = threading.Barrier(nprocs)
        self.cond = threading.Condition()
        self.mailboxes: list[list[_Message]] = [[] for _ in range(nprocs)]
        self.slots: list[Any] = [None] * nprocs
        self.aborted = False

    def abort(self) -> None:
        with self.cond:
            self.aborted = True
            self.cond.notify_all()
        self.barrier.abort()

    def post(self, dest: int, message: _Message) -> None:
        with self.cond:
            self.mailboxes[dest].append(message)
            self.cond.notify_all()

    def _find(self, rank: int, source: int, tag: int) -> int | None:
        for index, message in enumerate(self.mailboxes[rank]):
            if source not in (ANY_SOURCE, message.source):
                continue
            if tag not in (ANY_TAG, message.tag):
                continue
            return index
        return None

    def take(self, rank: int, source: int, tag: int, block: bool) -> _Message | None:
        with self.cond:
            while True:
                index = self._find(rank, source, tag)
                if index is not None:
                    return self.mailboxes[rank].pop(index)
                if self.aborted:
                    raise _Aborted("another rank of the group failed")
                if not block:
                    return None
                self.cond.wait()

    def peek(self, rank: int, source: int, tag: int) -> _Message | None:
        with self.cond:
            if self.aborted:
                raise _Aborted("another rank of the group failed")
            index = self._find(rank, source, tag)
            return None if index is None else self.mailboxes[rank][index]

    def sync(self) -> None:
        try:
            self.barrier.wait()
        except threading.BrokenBarrierError:
            raise _Aborted("another rank of the group failed") from None

    def exchange(self, rank: int, value: Any) -> list[Any]:
        self.slots[rank] = value
        self.sync()
        values = copy.deepcopy(self.slots)
        self.sync()
        return values


class Request:
    """Handle of a non-blocking operation."""

    def __init__(
        self,
        matcher: Callable[[bool], _Message | None] | None = None,
        value: Any = None,
        cond: threading.Condition | None = None,
    ) -> None:
        self._matcher = matcher
        self._done = matcher is None
        self._returned = False
        self._cond = cond
        self.value = value
        self.source: int | None = None
        self.tag: int | None = None

    def _complete(self, message: _Message) -> None:
        self._done = True
        self.value = message.data
        self.source = message.source
        self.tag = message.tag

    def wait(self) -> Any:
        """Block until the operation completes and return its result."""
        if not self._done and self._matcher is not None:
            message = self._matcher(True)
            assert message is not None
            self._complete(message)
        self._returned = True
        return self.value

    def test(self) -> tuple[bool, Any]:
        """Return (completed, result) without blocking."""
        if not self._done and self._matcher is not None:
            message = self._matcher(False)
            if message is None:
                return False, None
            self._complete(message)
        self._returned = True
        return True, self.value


def wait_all(requests: Iterable[Request]) -> list[Any]:
    """Wait for every request and return their results in order."""
    return [request.wait() for request in requests]


def wait_any(requests: Sequence[Request]) -> tuple[int, Any]:
    """Wait until one pending request completes; return (index, result).

    Requests whose result was already returned are ignored.
    """
    pending = [(i, r) for i, r in enumerate(requests) if not r._returned]
    if not pending:
        raise ValueError("no pending requests to wait for")
    cond = next((r._cond for _, r in pending if r._cond is not None), None)
    while True:
        for index, request in pending:
            done, value = request.test()
            if done:
                return index, value
        if cond is None:
            time.sleep(_POLL_INTERVAL)
        else:
            with cond:
                cond.wait(_POLL_INTERVAL)


def dims_create(nnodes: int, ndims: int) -> list[int]:
    """Split ``nnodes`` into ``ndims`` balanced factors, largest first."""
    if nnodes < 1:
        raise ValueError(f"number of nodes must be positive, got {nnodes}")
    if ndims < 1:
        raise ValueError(f"number of dimensions must be positive, got {ndims}")
    primes: list[int] = []
    remaining = nnodes
    factor = 2
    while factor * factor <= remaining:
        while remaining % factor == 0:
            primes.append(factor)
            remaining //= factor
        factor += 1
    if remaining > 1:
        primes.append(remaining)
    dims = [1] * ndims
    for prime in sorted(primes, reverse=True):
        smallest = min(range(ndims), key=dims.__getitem__)
        dims[smallest] *= prime
    return sorted(dims, reverse=True)


class Communicator:
    """One rank's view of its group."""

    def __init__(self, world: _World | None = None, rank: int = 0) -> None:
        self._world = world if world is not None else _World(1)
        if not 0 <= rank < self._world.nprocs:
            raise ValueError(f"rank {rank} outside group of {self._world.nprocs}")
        self._rank = rank
        self.default_tag = 0

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def nprocs(self) -> int:
        return self._world.nprocs

    def _check_rank(self, rank: int, what: str) -> None:
        if not 0 <= rank < self.nprocs:
            raise ValueError(f"{what} rank {rank} outside group of {self.nprocs}")

    def _resolve_tag(self, tag: int | None) -> int:
        tag = self.default_tag if tag is None else tag
        if tag < 0:
            raise ValueError(f"message tag must not be negative, got {tag}")
        return tag

    def barrier(self) -> None:
        """Block until every rank of the group has reached the barrier."""
        self._world.sync()

    def time(self) -> float:
        """Return a wall-clock time in seconds for measuring intervals."""
        return time.perf_counter()

    def set_default_tag(self, tag: int) -> None:
        """Set the tag used by sends that do not name one."""
        self.default_tag = self._resolve_tag(tag)

    def send(self, dest: int, data: Any, tag: int | None = None) -> None:
        """Send a copy of ``data`` to ``dest``."""
        self._check_rank(dest, "destination")
        message = _Message(self._rank, self._resolve_tag(tag), copy.deepcopy(data))
        self._world.post(dest, message)

    def _source(self, source: int) -> int:
        if source != ANY_SOURCE:
            self._check_rank(source, "source")
        return source

    def recv(self, source: int = ANY_SOURCE, tag: int = ANY_TAG) -> Any:
        """Block until a matching message arrives and return its data."""
        message = self._world.take(self._rank, self._source(source), tag, True)
        assert message is not None
        return message.data

    def isend(self, dest: int, data: Any, tag: int | None = None) -> Request:
        """Start a send; the message is buffered so the request is complete."""
        self.send(dest, data, tag)
        return Request()

    def irecv(self, source: int = ANY_SOURCE, tag: int = ANY_TAG) -> Request:
        """Start a receive that completes when a matching message arrives."""
        source = self._source(source)
        world, rank = self._world, self._rank
        return Request(
            matcher=lambda block: world.take(rank, source, tag, block),
            cond=world.cond,
        )

    def iprobe(self, source: int = ANY_SOURCE, tag: int = ANY_TAG) -> tuple[int, int] | None:
        """Return (source, tag) of a waiting matching message, or None."""
        message = self._world.peek(self._rank, self._source(source), tag)
        return None if message is None else (message.source, message.tag)

    def bcast(self, root: int, data: Any = None) -> Any:
        """Return the root's ``data`` on every rank."""
        self._check_rank(root, "root")
        return self._world.exchange(self._rank, data if self._rank == root else None)[root]

    def gather(self, root: int, data: Any) -> list[Any] | None:
        """Collect every rank's ``data`` in rank order at ``root``."""
        self._check_rank(root, "root")
        values = self._world.exchange(self._rank, data)
        return values if self._rank == root else None

    def allgather(self, data: Any) -> list[Any]:
        """Collect every rank's ``data`` in rank order on every rank."""
        return self._world.exchange(self._rank, data)

    def scatter(self, root: int, data: Sequence[Any] | None = None) -> Any:
        """Hand element ``i`` of the root's sequence to rank ``i``."""
        self._check_rank(root, "root")
        values = self._world.exchange(self._rank, data if self._rank == root else None)
        chunks = values[root]
        if chunks is None or len(chunks) != self.nprocs:
            raise ValueError(f"scatter needs one element per rank ({self.nprocs})")
        return chunks[self._rank]

    def alltoall(self, data: Sequence[Any]) -> list[Any]:
        """Send element ``i`` of ``data`` to rank ``i``; return what arrived."""
        values = self._world.exchange(self._rank, data)
        if any(v is None or len(v) != self.nprocs for v in values):
            raise ValueError(f"alltoall needs one element per rank ({self.nprocs})")
        return [values[source][self._rank] for source in range(self.nprocs)]

    def reduce(
        self, root: int, data: Any, op: Callable[[Any, Any], Any] = operator.add
    ) -> Any:
        """Combine ``data`` of all ranks in rank order with ``op`` at ``root``.

        Lists and tuples are combined element by element.
        """
        self._check_rank(root, "root")
        values = self._world.exchange(self._rank, data)
        if self._rank != root:
            return None
        if isinstance(data, (list, tuple)):
            if any(len(v) != len(data) for v in values):
                raise ValueError("reduce needs sequences of equal length on every rank")
            return [functools.reduce(op, column) for column in zip(*values)]
        return functools.reduce(op, values)

    def proc_layout(self, ndims: int = 3) -> list[int]:
        """Return a balanced grid of ``ndims`` dimensions for the group."""
        return dims_create(self.nprocs, ndims)

    def cart_coords(self, dims: Sequence[int] | None = None) -> list[int]:
        """Return this rank's row-major coordinates in the grid ``dims``."""
        dims = list(dims) if dims is not None else self.proc_layout()
        if math.prod(dims) != self.nprocs:
            raise ValueError(f"grid {dims} does not hold {self.nprocs} ranks")
        coords = []
        remaining = self._rank
        for extent in reversed(dims):
            coords.append(remaining % extent)
            remaining //= extent
        return coords[::-1]


def run_parallel(nprocs: int, target: Callable[..., Any], *args: Any) -> list[Any]:
    """Run ``target(comm, *args)`` on ``nprocs`` ranks; return results by rank.

    If any rank raises, the group is aborted and the first failure is
    raised in the caller.
    """
    world = _World(nprocs)
    results: list[Any] = [None] * nprocs
    errors: list[BaseException] = []
    errors_lock = threading.Lock()

    def runner(rank: int) -> None:
        try:
            results[rank] = target(Communicator(world, rank), *args)
        except BaseException as exc:  # noqa: BLE001 - re-raised in the caller
            with errors_lock:
                errors.append(exc)
            world.abort()

    threads = [
        threading.Thread(target=runner, args=(rank,), daemon=True)
        for rank in range(nprocs)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    if errors:
        primary = [e for e in errors if not isinstance(e, (_Aborted, threading.BrokenBarrierError))]
        raise (primary or errors)[0]
    return results