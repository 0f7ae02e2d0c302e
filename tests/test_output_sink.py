"""
Tests for the iteration log writer.
"""

import pytest

from coordinator.controller import IterationRecord
from coordinator.output_sink import HEADER, IterationLogWriter


class TestIterationLogWriter:
    """Test log lifecycle and format."""

    def test_header_records_and_trailer(self, tmp_path):
        path = tmp_path / "output.txt"
        writer = IterationLogWriter(path)

        writer.open()
        writer.write_record(IterationRecord(index=0, weights=[0.5, -1.0], total_error=3.25))
        writer.write_record(IterationRecord(index=1, weights=[float('nan'), 0.0], converged=True))
        writer.close("convergence detected at iteration 1")

        assert path.read_text() == (
            f"{HEADER}\n"
            "Iteration 0\n"
            "Weight Vector: [0.5, -1.0]\n"
            "Total error: 3.25\n"
            "\n"
            "Iteration 1\n"
            "One of the worker nodes has converged\n"
            "\n"
            "Run finished: convergence detected at iteration 1\n"
        )
        assert writer.records_written == 2

    def test_write_before_open(self, tmp_path):
        writer = IterationLogWriter(tmp_path / "output.txt")

        with pytest.raises(RuntimeError):
            writer.write_record(IterationRecord(index=0, weights=[1.0], total_error=0.0))

    def test_open_twice(self, tmp_path):
        writer = IterationLogWriter(tmp_path / "output.txt")
        writer.open()
        try:
            with pytest.raises(RuntimeError):
                writer.open()
        finally:
            writer.close("done")

    def test_close_is_idempotent(self, tmp_path):
        path = tmp_path / "output.txt"
        writer = IterationLogWriter(path)
        writer.open()
        writer.close("first")
        writer.close("second")

        assert not writer.is_open
        assert "second" not in path.read_text()

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "runs" / "a" / "output.txt"
        writer = IterationLogWriter(path)
        writer.open()
        writer.close("done")

        assert path.exists()
