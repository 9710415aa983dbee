import io
from pathlib import Path

import pytest

from patternbench.comm import Communicator, run_parallel
from patternbench.patternio import (
    MEGABYTE,
    PatternPOSIX,
    PatternPOSIXAligned,
    PatternPOSIXUnique,
    PatternViewCollective,
    PatternViewIndependent,
    aligned_transfer_size,
    interleaved_offsets,
)


def _shared_layout(nprocs, transfer, reps):
    return b"".join(bytes([r + 1]) * transfer for r in range(nprocs)) * reps


def _bench(comm, cls, path, transfer, file_size):
    pio = cls(comm)
    pio.create_file(path)
    pio.write_interleaved(bytes([comm.rank + 1]) * transfer, transfer, file_size)
    pio.close_file()
    return comm.rank


def _create_and_remove_unique(comm, base):
    pio = PatternPOSIXUnique(comm)
    pio.create_file(base)
    pio.close_file()
    created = sorted(p.name for p in Path(base).parent.iterdir())
    pio.delete_file(base)
    return created


def test_interleaved_offsets_example():
    assert list(interleaved_offsets(1, 4, 10, 100)) == [10, 50, 90]


@pytest.mark.parametrize("rank,nprocs,transfer,size", [(0, 1, 7, 100), (2, 3, 5, 61), (1, 2, 4, 3)])
def test_interleaved_offsets_invariants(rank, nprocs, transfer, size):
    offsets = list(interleaved_offsets(rank, nprocs, transfer, size))
    assert offsets[0] == rank * transfer
    assert all(b - a == nprocs * transfer for a, b in zip(offsets, offsets[1:]))
    assert all(o < size for o in offsets[1:])
    assert offsets[-1] + nprocs * transfer >= size


def test_interleaved_offsets_rejects_zero_transfer():
    with pytest.raises(ValueError):
        interleaved_offsets(0, 1, 0, 10)


def test_interleaved_offsets_rejects_bad_rank():
    with pytest.raises(ValueError):
        interleaved_offsets(3, 3, 4, 10)


def test_aligned_transfer_size_keeps_whole_megabytes():
    assert aligned_transfer_size(MEGABYTE) == MEGABYTE
    assert aligned_transfer_size(1) == MEGABYTE


@pytest.mark.parametrize("size", [MEGABYTE + 1, 3 * MEGABYTE - 5, 65536])
def test_aligned_transfer_size_invariants(size):
    aligned = aligned_transfer_size(size)
    assert aligned % MEGABYTE == 0
    assert size <= aligned < size + MEGABYTE


@pytest.mark.parametrize(
    "cls", [PatternPOSIX, PatternPOSIXAligned, PatternViewIndependent, PatternViewCollective]
)
def test_shared_file_layout(tmp_path, cls):
    path = tmp_path / "interleaved"
    ranks = run_parallel(3, _bench, cls, str(path), 4, 24)
    assert ranks == [0, 1, 2]
    assert path.read_bytes() == _shared_layout(3, 4, 2)


def test_aligned_large_transfer_pads_slots(tmp_path, capsys):
    path = tmp_path / "aligned"
    transfer = MEGABYTE + 1
    run_parallel(2, _bench, PatternPOSIXAligned, str(path), transfer, 1)
    slot = aligned_transfer_size(transfer)
    content = path.read_bytes()
    assert content[:transfer] == b"\x01" * transfer
    assert content[transfer:slot] == b"\0" * (slot - transfer)
    assert content[slot:] == b"\x02" * transfer
    assert capsys.readouterr().out == f"{slot} "


def test_aligned_reports_to_given_stream(tmp_path):
    out = io.StringIO()
    pio = PatternPOSIXAligned(Communicator(), out=out)
    pio.create_file(str(tmp_path / "f"))
    pio.write_interleaved(b"z" * 8, 8, 8)
    pio.close_file()
    assert out.getvalue() == "8 "


def test_unique_files_per_rank(tmp_path):
    base = tmp_path / "unique"
    ranks = run_parallel(2, _bench, PatternPOSIXUnique, str(base), 3, 12)
    assert ranks == [0, 1]
    for rank in range(2):
        assert (tmp_path / f"unique{rank:03d}").read_bytes() == bytes([rank + 1]) * 6


def test_unique_delete_removes_rank_file(tmp_path):
    base = str(tmp_path / "u")
    created = run_parallel(1, _create_and_remove_unique, base)
    assert created == [["u000"]]
    assert list(tmp_path.iterdir()) == []


def test_delete_file(tmp_path):
    path = tmp_path / "gone"
    with PatternPOSIX(Communicator()) as pio:
        pio.create_file(str(path))
    pio.delete_file(str(path))
    assert not path.exists()
    with pytest.raises(FileNotFoundError):
        pio.delete_file(str(path))


def test_short_data_rejected(tmp_path):
    pio = PatternPOSIX(Communicator())
    pio.create_file(str(tmp_path / "f"))
    with pytest.raises(ValueError):
        pio.write_interleaved(b"ab", 4, 16)
    pio.close_file()


def test_write_without_open_file():
    with pytest.raises(ValueError):
        PatternViewCollective(Communicator()).write_interleaved(b"abcd", 4, 4)