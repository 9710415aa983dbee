import math

import pytest

from patternbench.comm import Communicator, run_parallel
from patternbench.parallelio import ParallelFile, strided_offsets, subarray_offsets


def _shared_layout(nprocs, transfer, reps):
    return b"".join(bytes([r + 1]) * transfer for r in range(nprocs)) * reps


def test_subarray_one_dimension():
    assert subarray_offsets(100, 10, 20) == [(20, 10)]


def test_subarray_two_dimensions():
    assert subarray_offsets((4, 3), (2, 2), (1, 1)) == [(5, 2), (9, 2)]


def test_subarray_full_rows_merge():
    runs = subarray_offsets((4, 3), (4, 2), (0, 1))
    assert len(runs) == 1
    assert runs[0][1] == math.prod((4, 2))


def test_subarray_runs_stay_within_extent():
    runs = subarray_offsets((5, 4, 3), (2, 3, 2), (1, 1, 1))
    assert sum(length for _, length in runs) == 2 * 3 * 2
    assert all(0 <= start and start + length <= 5 * 4 * 3 for start, length in runs)
    starts = [start for start, _ in runs]
    assert starts == sorted(starts)


def test_subarray_rejects_overflow():
    with pytest.raises(ValueError):
        subarray_offsets(10, 5, 6)


def test_subarray_rejects_mismatched_dims():
    with pytest.raises(ValueError):
        subarray_offsets((4, 4), (2,), (0, 0))


def test_strided_runs():
    assert strided_offsets(3, 2, 5) == [(0, 2), (5, 2), (10, 2)]


def test_strided_contiguous_merges():
    assert strided_offsets(4, 3, 3) == [(0, 12)]


def test_strided_rejects_negative():
    with pytest.raises(ValueError):
        strided_offsets(-1, 2, 3)


def test_write_without_view(tmp_path):
    path = tmp_path / "plain"
    with ParallelFile(Communicator(), str(path)) as f:
        f.write_independent(3, b"abc")
    assert path.read_bytes() == b"\0\0\0abc"


def test_strided_view_write(tmp_path):
    path = tmp_path / "strided"
    with ParallelFile(Communicator(), str(path)) as f:
        f.set_pattern_strided(2, 2, 4)
        f.write_independent(0, b"abcdef")
    assert path.read_bytes() == b"ab\0\0cdef"


def test_element_size_must_divide_data(tmp_path):
    with ParallelFile(Communicator(), str(tmp_path / "f")) as f:
        f.set_pattern_strided(1, 2, 2, elem_size=4)
        with pytest.raises(ValueError):
            f.write_independent(0, b"abc")


def test_write_after_close(tmp_path):
    f = ParallelFile(Communicator(), str(tmp_path / "f"))
    f.close()
    assert f.closed
    with pytest.raises(ValueError):
        f.write_independent(0, b"x")


def test_open_missing_without_create(tmp_path):
    with pytest.raises(FileNotFoundError):
        ParallelFile(Communicator(), str(tmp_path / "missing"), create=False)


def test_set_info_records_hint(tmp_path):
    with ParallelFile(Communicator(), str(tmp_path / "f")) as f:
        f.set_info("striping_factor", "4")
        assert f.info == {"striping_factor": "4"}


def test_invalid_block_pattern(tmp_path):
    with ParallelFile(Communicator(), str(tmp_path / "f")) as f:
        with pytest.raises(ValueError):
            f.set_pattern_block(8, 4, 6, 1)


def _collective_writer(comm, path, transfer, reps):
    with ParallelFile(comm, path) as f:
        f.set_pattern_block(comm.nprocs * transfer, transfer, comm.rank * transfer, 1)
        f.write_collective(0, bytes([comm.rank + 1]) * (transfer * reps))
    return comm.rank


def test_collective_interleaving(tmp_path):
    path = tmp_path / "shared"
    ranks = run_parallel(4, _collective_writer, str(path), 3, 2)
    assert ranks == [0, 1, 2, 3]
    assert path.read_bytes() == _shared_layout(4, 3, 2)


def _independent_writer(comm, path, transfer):
    with ParallelFile(comm, path) as f:
        f.set_pattern_block(comm.nprocs * transfer, transfer, comm.rank * transfer)
        f.write_independent(0, bytes([comm.rank + 1]) * transfer)
        f.write_independent(transfer, bytes([comm.rank + 1]) * transfer)
        comm.barrier()


def test_independent_writes_in_pieces(tmp_path):
    path = tmp_path / "pieces"
    run_parallel(2, _independent_writer, str(path), 5)
    assert path.read_bytes() == _shared_layout(2, 5, 2)