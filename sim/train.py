"""
Main Training Script for Concord

Simulates the coordinator and all workers in a single process. With the
"memory" transport members share an InMemoryCollectiveChannel; with "grpc"
the coordinator hosts a loopback gRPC hub and workers connect to it as they
would from separate machines.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from communication.collectives import CollectiveChannel, InMemoryCollectiveChannel
from communication.grpc_client import GrpcCollectiveChannel
from communication.grpc_server import CollectiveGRPCServer
from coordinator.controller import Coordinator, RunSummary
from coordinator.output_sink import IterationLogWriter
from coordinator.training_config import RunConfig, add_config_arguments, config_from_args, TRANSPORTS
from core.dataset import create_true_weights
from core.exceptions import ConcordError
from core.membership import form_group
from worker.trainer import Worker


logger = logging.getLogger(__name__)


async def run_simulation(config: RunConfig, write_log: bool = True) -> RunSummary:
    """
    Run one optimization with every member in this process.

    Args:
        config: Validated run configuration
        write_log: Whether to write the iteration log to config.output_path

    Returns:
        RunSummary of the coordinator
    """
    membership = form_group(config.worker_num, config.dimension, config.group_id)
    hub = InMemoryCollectiveChannel([membership], round_timeout=config.round_timeout)

    server: Optional[CollectiveGRPCServer] = None
    worker_channels: List[CollectiveChannel] = []

    if config.transport == "grpc":
        # Port 0 lets the OS pick a free port for the loopback hub
        server = CollectiveGRPCServer(hub, host=config.host, port=0)
        await server.start()
        worker_channels = [
            GrpcCollectiveChannel(server.address, timeout=config.round_timeout)
            for _ in range(config.worker_num)
        ]
    else:
        worker_channels = [hub] * config.worker_num

    sink = IterationLogWriter(config.output_path) if write_log else None
    coordinator = Coordinator(hub, membership, sink=sink)
    workers = [
        Worker.from_config(config, worker_channels[i], membership, i)
        for i in range(config.worker_num)
    ]

    try:
        results = await asyncio.gather(
            coordinator.run(config.iter_num),
            *[worker.run(config.iter_num) for worker in workers],
        )
    finally:
        if server is not None:
            for channel in worker_channels:
                await channel.close()
            await server.stop()
        else:
            await hub.close()

    return results[0]


def train_distributed(config: RunConfig, write_log: bool = True) -> RunSummary:
    """
    Run the simulation and print a summary.

    Args:
        config: Validated run configuration
        write_log: Whether to write the iteration log

    Returns:
        RunSummary of the coordinator
    """
    print(f"\n{'='*60}")
    print(f"Concord Distributed Optimization Simulation")
    print(f"{'='*60}")
    print(f"Workers: {config.worker_num}")
    print(f"Iterations: {config.iter_num}")
    print(f"Dimension: {config.dimension}")
    print(f"Samples per worker: {config.samples_per_worker}")
    print(f"Learning rate: {config.learning_rate}")
    print(f"Update rule: {config.update_rule}")
    print(f"Transport: {config.transport}")
    print(f"{'='*60}\n")

    summary = asyncio.run(run_simulation(config, write_log=write_log))

    records = summary.records
    errors = [r.total_error for r in records if r.total_error is not None]

    print(f"\n{'='*60}")
    print("Optimization Complete!")
    print(f"{'='*60}")
    print(f"Finished: {summary.describe()}")
    print(f"Total time: {summary.total_time:.2f}s")
    print(f"Iterations/sec: {len(records) / max(summary.total_time, 1e-9):.2f}")
    if errors:
        print(f"Initial error: {errors[0]:.4f}")
        print(f"Final error: {errors[-1]:.4f}")
        print(f"Error reduction: {errors[0] - errors[-1]:.4f}")
    print(f"Final weights: {[round(w, 4) for w in summary.final_weights]}")
    print(f"True weights:  {[round(w, 4) for w in create_true_weights(config.dimension, config.seed).tolist()]}")
    if write_log:
        print(f"Log: {config.output_path}")
    print(f"\n{'='*60}\n")

    return summary


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Concord distributed optimization simulation")
    add_config_arguments(parser)
    parser.add_argument(
        '--transport',
        type=str,
        choices=TRANSPORTS,
        default=None,
        help='Collective transport (default: memory)'
    )
    parser.add_argument('--no-log', action='store_true', help='Do not write the iteration log')
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args, transport=args.transport)
    except ConcordError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    train_distributed(config, write_log=not args.no_log)
    return 0


if __name__ == "__main__":
    sys.exit(main())
