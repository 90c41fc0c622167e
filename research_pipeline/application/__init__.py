"""Application services."""

from .jobs import JobController, get_job_controller, get_job_repository, get_phase_tracker, reset_job_state
from .recovery import RecoveryDispatcher, RecoveryResult, get_recovery_dispatcher
from .watchdog import RecoveryWatchdog, SweepReport, get_recovery_watchdog

__all__ = [
    "JobController",
    "RecoveryDispatcher",
    "RecoveryResult",
    "RecoveryWatchdog",
    "SweepReport",
    "get_job_controller",
    "get_job_repository",
    "get_phase_tracker",
    "get_recovery_dispatcher",
    "get_recovery_watchdog",
    "reset_job_state",
]
