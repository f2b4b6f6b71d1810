"""
Core functionality for VirtualDatabase reconciliation.

This package provides the building blocks the controller runs on:
- Instance state machine for endpoint population
- Deduplicating work queue with per-key backoff
"""

# Users should import directly from submodules:
# from vdb_controller.core.state_machine import InstanceState, InstanceStateMachine
# from vdb_controller.core.work_queue import WorkQueue

__all__ = [
    "InstanceState",
    "InstanceStateMachine",
    "WorkQueue",
]
