"""
Worker module for Concord.

Workers are the compute nodes that:
- Own a private partition of the training data
- Compute local gradients and errors
- Apply a local weight update rule
- Participate in every collective round
"""

__version__ = "0.1.0"
