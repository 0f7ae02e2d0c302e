"""
Coordinator node for Concord.

Hosts the collective hub over gRPC, runs the optimization loop as the
coordinator member, and writes the iteration log. Workers are separate
processes started with worker.client.

Usage:
    python -m coordinator.server --workers 2 --iterations 50 --port 50051
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from communication.collectives import InMemoryCollectiveChannel
from communication.grpc_server import CollectiveGRPCServer
from coordinator.controller import Coordinator, RunSummary
from coordinator.output_sink import IterationLogWriter
from coordinator.training_config import RunConfig, add_config_arguments, config_from_args
from core.exceptions import ConcordError
from core.membership import form_group


logger = logging.getLogger(__name__)


class CoordinatorNode:
    """
    Coordinator process: gRPC hub plus the Coordinator member.
    """

    def __init__(self, config: RunConfig):
        """
        Args:
            config: Validated run configuration
        """
        self.config = config
        self.membership = form_group(config.worker_num, config.dimension, config.group_id)
        self.hub = InMemoryCollectiveChannel([self.membership], round_timeout=config.round_timeout)
        self.server = CollectiveGRPCServer(self.hub, host=config.host, port=config.port)
        self.coordinator = Coordinator(
            self.hub,
            self.membership,
            sink=IterationLogWriter(config.output_path),
        )

    @property
    def address(self) -> str:
        return self.server.address

    async def start(self):
        await self.server.start()

    async def stop(self):
        await self.server.stop()

    async def run(self) -> RunSummary:
        """Start the hub, run the optimization, and stop the hub."""
        await self.start()
        try:
            return await self.coordinator.run(self.config.iter_num)
        finally:
            await self.stop()


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Concord coordinator node")
    add_config_arguments(parser)
    return parser.parse_args(argv)


async def main(config: Optional[RunConfig] = None) -> RunSummary:
    """
    Main entry point for the coordinator node.

    Args:
        config: Run configuration (defaults if None)
    """
    if config is None:
        config = RunConfig().check()

    node = CoordinatorNode(config)
    logger.info(f"Coordinator node starting with {config!r}")
    return await node.run()


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
    asyncio.run(main(run_config))
