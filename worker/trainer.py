"""
Worker side of the distributed optimization loop.

Each worker owns a private data partition and a private copy of the weight
vector. Every iteration it:
1. Computes a local gradient and contributes it to the gradient-sum reduce
2. Receives the global gradient and applies its update rule locally
3. Contributes its updated weights to the weight-average reduce
4. Adopts the averaged weights broadcast by the coordinator
5. Contributes its local error to the error-sum reduce
"""

import logging
import time
from typing import TYPE_CHECKING, Callable, Dict, Optional
import torch

from communication.collectives import CollectiveChannel
from core.dataset import LocalPartition, create_initial_weights, create_regression_partition
from core.membership import GroupMembership
from core.vector_ops import has_nan

if TYPE_CHECKING:
    from coordinator.training_config import RunConfig


logger = logging.getLogger(__name__)


UpdateRule = Callable[[torch.Tensor, torch.Tensor, torch.Tensor, float], torch.Tensor]


def global_step(
    weights: torch.Tensor,
    global_gradient: torch.Tensor,
    local_gradient: torch.Tensor,
    learning_rate: float,
) -> torch.Tensor:
    """Full-batch gradient step on the summed gradient of all workers."""
    return weights - learning_rate * global_gradient


def local_step(
    weights: torch.Tensor,
    global_gradient: torch.Tensor,
    local_gradient: torch.Tensor,
    learning_rate: float,
) -> torch.Tensor:
    """Gradient step on this worker's own data only."""
    return weights - learning_rate * local_gradient


UPDATE_RULES: Dict[str, UpdateRule] = {
    "global": global_step,
    "local": local_step,
}


class Worker:
    """
    A worker in the distributed optimization.

    Workers make no convergence decision of their own. The coordinator
    stops by broadcasting weights that contain NaN and then issuing no
    further rounds; a worker that adopts such weights stops as well.
    """

    def __init__(
        self,
        channel: CollectiveChannel,
        membership: GroupMembership,
        index: int,
        partition: LocalPartition,
        learning_rate: float = 0.001,
        update_rule: str = "global",
        initial_weights: Optional[torch.Tensor] = None,
    ):
        """
        Args:
            channel: Collective channel shared with the coordinator
            membership: Group this worker belongs to
            index: Worker index assigned at group formation
            partition: Local data partition
            learning_rate: Step size of the update rule
            update_rule: Name of the rule in UPDATE_RULES
            initial_weights: Weights proposed before iteration 0 (zeros if None)
        """
        if update_rule not in UPDATE_RULES:
            raise ValueError(f"Unknown update rule: {update_rule}")
        if partition.dimension != membership.vector_length:
            raise ValueError(
                f"Partition dimension {partition.dimension} does not match "
                f"group vector length {membership.vector_length}"
            )

        self.channel = channel
        self.membership = membership
        self.index = index
        self.member_id = membership.worker_ids[index]
        self.partition = partition
        self.learning_rate = learning_rate
        self.update_rule = UPDATE_RULES[update_rule]

        if initial_weights is None:
            initial_weights = torch.zeros(membership.vector_length, dtype=torch.float64)
        self.initial_weights = initial_weights
        self.weights: Optional[torch.Tensor] = None

        # Statistics
        self.stats = {
            'compute_time': 0.0,
            'communication_time': 0.0,
            'iterations': 0,
        }

    @classmethod
    def from_config(
        cls,
        config: 'RunConfig',
        channel: CollectiveChannel,
        membership: GroupMembership,
        index: int,
    ) -> 'Worker':
        """Build the worker with the given index, deriving its data from the run seed."""
        partition = create_regression_partition(
            index,
            dimension=config.dimension,
            num_samples=config.samples_per_worker,
            seed=config.seed,
            noise_std=config.noise_std,
        )
        initial_weights = create_initial_weights(
            index, config.dimension, seed=config.seed, init_std=config.init_std
        )
        return cls(
            channel=channel,
            membership=membership,
            index=index,
            partition=partition,
            learning_rate=config.learning_rate,
            update_rule=config.update_rule,
            initial_weights=initial_weights,
        )

    @property
    def group_id(self) -> str:
        return self.membership.group_id

    @property
    def coordinator_id(self) -> str:
        return self.membership.coordinator_id

    def compute_gradient(self, weights: torch.Tensor) -> torch.Tensor:
        """Gradient of 0.5 * ||X w - y||^2 on the local partition."""
        residual = self.partition.features @ weights - self.partition.targets
        return self.partition.features.T @ residual

    def compute_error(self, weights: torch.Tensor) -> torch.Tensor:
        """Local loss 0.5 * ||X w - y||^2 as a 0-dim tensor."""
        residual = self.partition.features @ weights - self.partition.targets
        return 0.5 * (residual @ residual)

    async def _reduce(self, contribution: torch.Tensor, combine: str):
        start_time = time.time()
        await self.channel.reduce(
            self.group_id, self.coordinator_id, self.member_id, contribution, combine
        )
        self.stats['communication_time'] += time.time() - start_time

    async def _receive(self) -> torch.Tensor:
        start_time = time.time()
        value = await self.channel.receive(self.group_id, self.member_id)
        self.stats['communication_time'] += time.time() - start_time
        return value

    async def setup(self):
        """Agree on initial weights: propose ours, adopt the broadcast average."""
        await self._reduce(self.initial_weights, "average")
        self.weights = await self._receive()
        logger.debug(f"{self.member_id} adopted initial weights {self.weights.tolist()}")

    async def step(self, iteration: int) -> bool:
        """
        Execute one iteration of the exchange protocol.

        Returns:
            False if the adopted weights contain NaN and the run is over
        """
        start_time = time.time()
        local_gradient = self.compute_gradient(self.weights)
        self.stats['compute_time'] += time.time() - start_time

        await self._reduce(local_gradient, "sum")
        global_gradient = await self._receive()

        local_weights = self.update_rule(
            self.weights, global_gradient, local_gradient, self.learning_rate
        )
        await self._reduce(local_weights, "average")

        # Averaged weights always replace the local copy
        self.weights = await self._receive()
        if has_nan(self.weights):
            logger.info(
                f"{self.member_id} received NaN weights at iteration {iteration}, stopping"
            )
            return False

        start_time = time.time()
        error = self.compute_error(self.weights)
        self.stats['compute_time'] += time.time() - start_time

        await self._reduce(error, "sum")
        return True

    async def run(self, iter_num: int) -> int:
        """
        Run setup and up to iter_num iterations.

        Returns:
            Number of iterations executed
        """
        logger.info(
            f"{self.member_id} starting: {self.partition.num_samples} samples, "
            f"{iter_num} iterations"
        )

        await self.setup()

        for iteration in range(iter_num):
            self.stats['iterations'] += 1
            if not await self.step(iteration):
                break

        logger.info(f"{self.member_id} finished after {self.stats['iterations']} iterations")
        return self.stats['iterations']

    def get_stats(self) -> Dict[str, float]:
        """Get worker statistics"""
        return dict(self.stats)
