"""
Communication module for Concord.

Provides the collective operations and transports the optimization loop
runs on:
- Broadcast: coordinator sends one value to every worker
- Reduce: every member contributes, the coordinator receives the combination
- In-memory transport for single-process runs, gRPC for separate processes
"""

from communication.collectives import CollectiveChannel, InMemoryCollectiveChannel
from communication.grpc_server import CollectiveGRPCServer
from communication.grpc_client import GrpcCollectiveChannel

__version__ = "0.1.0"

__all__ = [
    "CollectiveChannel",
    "InMemoryCollectiveChannel",
    "CollectiveGRPCServer",
    "GrpcCollectiveChannel",
]
