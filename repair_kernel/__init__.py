"""
Repair Kernel - job-sheet lifecycle core

A state-machine driven job tracking kernel with:
- A fixed, versioned catalog of twelve repair states
- Atomic transitions guarded by an optimistic version check
- Append-only, hash-chained transition audit
- Injectable time and persistence boundaries
"""

__version__ = "0.1.0"
