"""
Durable text log of an optimization run.

The log is opened once at run start, receives one block per iteration in
iteration order, and is closed once at run end with a trailer that says why
the run ended.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, TextIO, Union

if TYPE_CHECKING:
    from coordinator.controller import IterationRecord

logger = logging.getLogger(__name__)


HEADER = "Result for Linear Regression using gradient descent"


class IterationLogWriter:
    """
    Appends iteration records to a text file.

    Example output:
        Result for Linear Regression using gradient descent
        Iteration 0
        Weight Vector: [1.0, 1.0]
        Total error: 2.0

        Iteration 1
        One of the worker nodes has converged

        Run finished: convergence detected at iteration 1
    """

    def __init__(self, path: Union[str, Path]):
        """
        Args:
            path: File to write; parent directories are created on open
        """
        self.path = Path(path)
        self._file: Optional[TextIO] = None
        self.records_written = 0

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self):
        """Create the file and write the header."""
        if self._file is not None:
            raise RuntimeError(f"Log {self.path} is already open")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, 'w')
        self._file.write(f"{HEADER}\n")
        logger.info(f"Writing iteration log to {self.path}")

    def write_record(self, record: 'IterationRecord'):
        """Append the block for one iteration."""
        if self._file is None:
            raise RuntimeError("Log not open. Call open() first.")

        self._file.write(f"Iteration {record.index}\n")
        if record.converged:
            self._file.write("One of the worker nodes has converged\n")
        else:
            self._file.write(f"Weight Vector: {record.weights}\n")
            self._file.write(f"Total error: {record.total_error}\n\n")
        self._file.flush()
        self.records_written += 1

    def close(self, reason: str):
        """Write the trailer and close the file."""
        if self._file is None:
            return

        self._file.write(f"\nRun finished: {reason}\n")
        self._file.close()
        self._file = None
        logger.info(f"Closed iteration log {self.path} ({self.records_written} records)")
