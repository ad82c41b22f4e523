"""
Scene Spawner - Metered AI Video Generation
===========================================

Users spend one credit to turn a text prompt into a short video clip.

Workflow:
- Reserve one credit atomically (balance never goes negative)
- Submit to the generative provider and poll the long-running operation
- Download the finished clip and store it under a per-user key
- Write one immutable generation record

INVARIANT:
- A credit is spent if and only if a stored artifact AND a generation record exist.
  Every failure after the reservation refunds the credit exactly once.
"""

__version__ = "1.0.0"
__product__ = "Scene Spawner"
