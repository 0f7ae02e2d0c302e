"""
Run configuration for Concord.

The configuration source supplies the group size and iteration limit along
with the optimization and transport settings. Every node of a run loads the
same configuration; only the role differs.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List
import json
import logging

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


UPDATE_RULE_NAMES = ["global", "local"]
TRANSPORTS = ["memory", "grpc"]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass
class RunConfig:
    """
    Configuration of one optimization run.

    All nodes must agree on this configuration.
    """

    # Group
    worker_num: int = 2
    group_id: str = "ml-group"

    # Optimization
    iter_num: int = 10
    learning_rate: float = 0.001
    update_rule: str = "global"  # "global", "local"

    # Data (synthetic regression partitions)
    dimension: int = 4
    samples_per_worker: int = 64
    noise_std: float = 0.1
    init_std: float = 0.0  # 0 = all workers start from zeros
    seed: int = 42

    # Output
    output_path: str = "output.txt"

    # Transport
    transport: str = "memory"  # "memory", "grpc"
    host: str = "127.0.0.1"
    port: int = 50051
    round_timeout: Optional[float] = None  # seconds, None = wait forever

    # Logging
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunConfig':
        """Create from dictionary."""
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json_file(cls, path: str) -> 'RunConfig':
        """Load from JSON file."""
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    def to_json_file(self, path: str):
        """Save to JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def validate(self) -> List[str]:
        """
        Validate run configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.worker_num <= 0:
            errors.append(f"worker_num must be positive, got {self.worker_num}")
        if self.iter_num <= 0:
            errors.append(f"iter_num must be positive, got {self.iter_num}")

        if self.learning_rate <= 0:
            errors.append(f"learning_rate must be positive, got {self.learning_rate}")
        if self.update_rule not in UPDATE_RULE_NAMES:
            errors.append(f"Invalid update_rule: {self.update_rule}")

        if self.dimension <= 0:
            errors.append(f"dimension must be positive, got {self.dimension}")
        if self.samples_per_worker <= 0:
            errors.append(f"samples_per_worker must be positive, got {self.samples_per_worker}")
        if self.noise_std < 0:
            errors.append(f"noise_std must be non-negative, got {self.noise_std}")
        if self.init_std < 0:
            errors.append(f"init_std must be non-negative, got {self.init_std}")

        if self.transport not in TRANSPORTS:
            errors.append(f"Invalid transport: {self.transport}")
        if not 0 <= self.port <= 65535:
            errors.append(f"Invalid port: {self.port}")
        if self.round_timeout is not None and self.round_timeout <= 0:
            errors.append(f"round_timeout must be positive, got {self.round_timeout}")

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"Invalid log_level: {self.log_level}")

        return errors

    def check(self) -> 'RunConfig':
        """
        Raise ConfigurationError listing every problem, or return self.

        Raises:
            ConfigurationError: If validate() reports any errors
        """
        errors = self.validate()
        if errors:
            for error in errors:
                logger.error(f"Invalid configuration: {error}")
            raise ConfigurationError("; ".join(errors))
        return self

    def __repr__(self) -> str:
        return (
            f"RunConfig(workers={self.worker_num}, iterations={self.iter_num}, "
            f"lr={self.learning_rate}, rule='{self.update_rule}', "
            f"transport='{self.transport}')"
        )


def load_config(path: Optional[str] = None, **overrides) -> RunConfig:
    """
    Load a RunConfig from an optional JSON file, apply overrides, validate.

    Overrides whose value is None are ignored, so argparse namespaces can be
    passed through directly.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    config = RunConfig.from_json_file(path) if path else RunConfig()

    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, key):
            raise ConfigurationError(f"Unknown configuration key: {key}")
        setattr(config, key, value)

    return config.check()


def add_config_arguments(parser):
    """Register the command line overrides shared by every entry point."""
    parser.add_argument('--config', type=str, default=None, help='JSON run configuration file')
    parser.add_argument('--workers', dest='worker_num', type=int, help='Number of workers')
    parser.add_argument('--iterations', dest='iter_num', type=int, help='Maximum number of iterations')
    parser.add_argument('--lr', dest='learning_rate', type=float, help='Learning rate')
    parser.add_argument(
        '--update-rule',
        dest='update_rule',
        choices=UPDATE_RULE_NAMES,
        help='Local weight update rule'
    )
    parser.add_argument('--dimension', type=int, help='Weight vector length')
    parser.add_argument('--samples', dest='samples_per_worker', type=int, help='Samples per worker')
    parser.add_argument('--seed', type=int, help='Shared random seed')
    parser.add_argument('--output', dest='output_path', type=str, help='Iteration log path')
    parser.add_argument('--host', type=str, help='Coordinator host')
    parser.add_argument('--port', type=int, help='Coordinator gRPC port')
    parser.add_argument(
        '--round-timeout',
        dest='round_timeout',
        type=float,
        help='Seconds to wait for a collective round (default: wait forever)'
    )
    parser.add_argument('--log-level', dest='log_level', choices=LOG_LEVELS, help='Logging level')


CONFIG_ARGUMENTS = [
    'worker_num', 'iter_num', 'learning_rate', 'update_rule', 'dimension',
    'samples_per_worker', 'seed', 'output_path', 'host', 'port',
    'round_timeout', 'log_level',
]


def config_from_args(args, **extra) -> RunConfig:
    """Build a validated RunConfig from parsed arguments."""
    overrides = {key: getattr(args, key, None) for key in CONFIG_ARGUMENTS}
    overrides.update(extra)
    return load_config(args.config, **overrides)
