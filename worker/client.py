"""
Worker node for Concord.

Connects to the coordinator's collective hub and runs one Worker. The
worker index is an explicit startup argument assigned at group formation;
a node never infers its role at runtime.

Usage:
    python -m worker.client --index 0 --workers 2 --iterations 50 --port 50051
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from communication.grpc_client import GrpcCollectiveChannel
from coordinator.training_config import RunConfig, add_config_arguments, config_from_args
from core.exceptions import ConcordError, ConfigurationError
from core.membership import Role, form_group
from worker.trainer import Worker


logger = logging.getLogger(__name__)


async def main(config: RunConfig, role: Role) -> int:
    """
    Main entry point for a worker node.

    Args:
        config: Run configuration shared with the coordinator
        role: Worker role with the assigned index

    Returns:
        Number of iterations executed
    """
    if role.is_coordinator:
        raise ConfigurationError("worker.client requires a worker role")

    membership = form_group(config.worker_num, config.dimension, config.group_id)
    if not 0 <= role.index < membership.worker_num:
        raise ConfigurationError(
            f"Worker index {role.index} outside 0..{membership.worker_num - 1}"
        )

    channel = GrpcCollectiveChannel(config.address, timeout=config.round_timeout)
    worker = Worker.from_config(config, channel, membership, role.index)

    try:
        return await worker.run(config.iter_num)
    finally:
        await channel.close()


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Concord worker node")
    parser.add_argument('--index', type=int, required=True, help='Worker index assigned at group formation')
    add_config_arguments(parser)
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    try:
        run_config = config_from_args(args, transport="grpc")
    except ConcordError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=getattr(logging, run_config.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(main(run_config, Role.worker(args.index)))
