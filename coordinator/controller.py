"""
Coordinator side of the distributed optimization loop.

The coordinator is the receiver of every reduce and the sender of every
broadcast. Per iteration it collects the summed gradient, broadcasts it,
collects the averaged weights, broadcasts them, and either stops (NaN in
the weights) or collects the summed error.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import torch

from communication.collectives import CollectiveChannel
from coordinator.output_sink import IterationLogWriter
from core.exceptions import ConfigurationError
from core.membership import GroupMembership
from core.vector_ops import has_nan


logger = logging.getLogger(__name__)


class CoordinatorState(Enum):
    IDLE = "idle"
    AWAIT_GRADIENT_REDUCE = "await_gradient_reduce"
    BROADCAST_GRADIENT = "broadcast_gradient"
    AWAIT_WEIGHT_REDUCE = "await_weight_reduce"
    BROADCAST_WEIGHTS = "broadcast_weights"
    CHECK_CONVERGENCE = "check_convergence"
    TERMINATED = "terminated"


ITERATION_LIMIT = "iteration_limit"
CONVERGED = "converged"


@dataclass
class IterationRecord:
    """Outcome of one iteration, as logged by the coordinator."""

    index: int
    weights: List[float]
    total_error: Optional[float] = None
    converged: bool = False

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'weights': list(self.weights),
            'total_error': self.total_error,
            'converged': self.converged,
        }


@dataclass
class RunSummary:
    """Records of a finished run and why it ended."""

    records: List[IterationRecord] = field(default_factory=list)
    termination_reason: Optional[str] = None
    total_time: float = 0.0

    @property
    def final_weights(self) -> Optional[List[float]]:
        return self.records[-1].weights if self.records else None

    def describe(self) -> str:
        """Human-readable reason, used as the log trailer."""
        if self.termination_reason == CONVERGED:
            return f"convergence detected at iteration {self.records[-1].index}"
        return f"iteration limit reached ({len(self.records)} iterations)"


class Coordinator:
    """
    Drives the iteration loop over an injected collective channel.

    State machine:
        IDLE -> AWAIT_GRADIENT_REDUCE -> BROADCAST_GRADIENT -> AWAIT_WEIGHT_REDUCE
        -> BROADCAST_WEIGHTS -> CHECK_CONVERGENCE -> (next iteration | TERMINATED)
    """

    def __init__(
        self,
        channel: CollectiveChannel,
        membership: GroupMembership,
        sink: Optional[IterationLogWriter] = None,
    ):
        """
        Args:
            channel: Collective channel shared with the workers
            membership: Group the coordinator leads
            sink: Optional durable log for iteration records
        """
        self.channel = channel
        self.membership = membership
        self.sink = sink
        self.member_id = membership.coordinator_id
        self.state = CoordinatorState.IDLE
        self.transitions: List[CoordinatorState] = [CoordinatorState.IDLE]
        self.initial_weights: Optional[torch.Tensor] = None

    @property
    def group_id(self) -> str:
        return self.membership.group_id

    def _enter(self, state: CoordinatorState):
        logger.debug(f"Coordinator state {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    async def _receive_reduce(self, combine: str) -> torch.Tensor:
        # The coordinator owns no data; it joins the barrier with no contribution
        return await self.channel.reduce(
            self.group_id, self.member_id, self.member_id, None, combine
        )

    async def _broadcast(self, value: torch.Tensor):
        await self.channel.broadcast(self.group_id, self.member_id, value)

    async def agree_initial_weights(self) -> torch.Tensor:
        """Average the workers' proposed initial weights and broadcast them."""
        weights = await self._receive_reduce("average")
        await self._broadcast(weights)
        self.initial_weights = weights
        logger.info(f"Initial weights agreed: {weights.tolist()}")
        return weights

    async def run_iteration(self, index: int) -> IterationRecord:
        """Execute one iteration of the exchange protocol."""
        self._enter(CoordinatorState.AWAIT_GRADIENT_REDUCE)
        global_gradient = await self._receive_reduce("sum")

        self._enter(CoordinatorState.BROADCAST_GRADIENT)
        await self._broadcast(global_gradient)

        self._enter(CoordinatorState.AWAIT_WEIGHT_REDUCE)
        global_weights = await self._receive_reduce("average")

        self._enter(CoordinatorState.BROADCAST_WEIGHTS)
        await self._broadcast(global_weights)

        self._enter(CoordinatorState.CHECK_CONVERGENCE)
        weights = global_weights.tolist()

        if has_nan(global_weights):
            logger.warning(f"NaN in averaged weights at iteration {index}, terminating")
            return IterationRecord(index=index, weights=weights, total_error=None, converged=True)

        total_error = float(await self._receive_reduce("sum"))
        logger.debug(f"Iteration {index}: total error {total_error}")
        return IterationRecord(index=index, weights=weights, total_error=total_error, converged=False)

    async def run_optimization(self, iter_num: int) -> List[IterationRecord]:
        """
        Run initial weight agreement and up to iter_num iterations.

        Args:
            iter_num: Maximum number of iterations (> 0)

        Returns:
            One IterationRecord per executed iteration, in order

        Raises:
            ConfigurationError: If iter_num is not positive
            CollectiveError: If a collective round fails; the run is aborted
        """
        return (await self.run(iter_num)).records

    async def run(self, iter_num: int) -> RunSummary:
        """Like run_optimization, but also report why and how long the run took."""
        if iter_num <= 0:
            raise ConfigurationError(f"iter_num must be positive, got {iter_num}")

        summary = RunSummary()
        start_time = time.time()

        if self.sink is not None:
            self.sink.open()

        logger.info(
            f"Starting optimization on group '{self.group_id}': "
            f"{self.membership.worker_num} workers, {iter_num} iterations"
        )

        try:
            await self.agree_initial_weights()

            for index in range(iter_num):
                record = await self.run_iteration(index)
                summary.records.append(record)
                if self.sink is not None:
                    self.sink.write_record(record)
                if record.converged:
                    summary.termination_reason = CONVERGED
                    break
            else:
                summary.termination_reason = ITERATION_LIMIT

        except asyncio.CancelledError:
            logger.warning(f"Optimization cancelled after {len(summary.records)} iterations")
            if self.sink is not None:
                self.sink.close(f"cancelled after {len(summary.records)} iterations")
            raise
        except Exception as e:
            logger.error(f"Optimization aborted: {type(e).__name__}: {e}")
            if self.sink is not None:
                self.sink.close(f"aborted after {len(summary.records)} iterations: {e}")
            raise

        self._enter(CoordinatorState.TERMINATED)
        summary.total_time = time.time() - start_time

        if self.sink is not None:
            self.sink.close(summary.describe())

        final_error = summary.records[-1].total_error
        logger.info(
            f"Optimization finished: {summary.describe()}, "
            f"final error {final_error if final_error is not None else 'n/a'}"
        )

        return summary
