"""
Scheduler Service - Package Entry Point
"""

from wpfleet.services.scheduler.orchestrator import SYNC_JOB_ID, FleetScheduler

__all__ = ["FleetScheduler", "SYNC_JOB_ID"]
