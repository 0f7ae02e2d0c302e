"""
Synthetic regression data for workers.

Every worker derives its own partition from a shared seed, so nodes running
in separate processes agree on the underlying model without exchanging data.
"""

from dataclasses import dataclass
import torch
import logging

logger = logging.getLogger(__name__)


@dataclass
class LocalPartition:
    """A worker's private slice of the training data."""

    features: torch.Tensor  # (num_samples, dimension)
    targets: torch.Tensor  # (num_samples,)

    @property
    def num_samples(self) -> int:
        return self.features.shape[0]

    @property
    def dimension(self) -> int:
        return self.features.shape[1]


def create_true_weights(dimension: int, seed: int = 42) -> torch.Tensor:
    """Weights that generate the targets, identical on every node."""
    generator = torch.Generator().manual_seed(seed)
    return torch.randn(dimension, generator=generator, dtype=torch.float64)


def create_regression_partition(
    index: int,
    dimension: int,
    num_samples: int,
    seed: int = 42,
    noise_std: float = 0.1,
) -> LocalPartition:
    """
    Create the data partition of one worker.

    Targets follow y = X w* + noise, where w* comes from create_true_weights
    with the same seed. Features and noise use a per-worker stream
    (seed offset by index + 1), so partitions do not overlap.

    Args:
        index: Worker index
        dimension: Number of features (weight vector length)
        num_samples: Samples in this partition
        seed: Shared seed
        noise_std: Standard deviation of the target noise

    Returns:
        LocalPartition for the worker

    Example:
        >>> part = create_regression_partition(0, dimension=4, num_samples=32)
        >>> part.features.shape
        torch.Size([32, 4])
    """
    true_weights = create_true_weights(dimension, seed)

    generator = torch.Generator().manual_seed(seed + index + 1)
    features = torch.randn(num_samples, dimension, generator=generator, dtype=torch.float64)
    noise = torch.randn(num_samples, generator=generator, dtype=torch.float64) * noise_std
    targets = features @ true_weights + noise

    logger.debug(
        f"Created partition for worker {index}: "
        f"{num_samples} samples, dimension {dimension}"
    )

    return LocalPartition(features=features, targets=targets)


def create_initial_weights(
    index: int,
    dimension: int,
    seed: int = 42,
    init_std: float = 0.0,
) -> torch.Tensor:
    """Initial local weights a worker proposes before iteration 0."""
    if init_std == 0.0:
        return torch.zeros(dimension, dtype=torch.float64)

    generator = torch.Generator().manual_seed(seed * 7919 + index)
    return torch.randn(dimension, generator=generator, dtype=torch.float64) * init_std
