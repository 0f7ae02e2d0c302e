"""
Coordinator module for Concord.

The coordinator is responsible for:
- Receiving every reduce (summed gradients, averaged weights, summed errors)
- Broadcasting the global gradient and the averaged weights
- Detecting numeric convergence and deciding when to stop
- Writing the per-iteration log
"""

__version__ = "0.1.0"
