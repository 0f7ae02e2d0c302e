"""
Core building blocks for Concord.

Shared by the coordinator and workers:
- Vector operations used as reduce combine functions
- Group membership and role assignment
- Synthetic regression data partitions
- Exception hierarchy
"""

__version__ = "0.1.0"
