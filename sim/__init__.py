"""
Concord Simulation

Single-process simulation of the coordinator and workers, over the
in-memory collective channel or a loopback gRPC hub.
"""

__version__ = "0.1.0"
