"""Domain layer definitions."""

from .errors import (
    ActiveJobExistsError,
    DispatchError,
    InvalidJobInputError,
    JobNotFoundError,
    JobTransitionError,
    RecoveryInProgressError,
    ResearchJobError,
    SignatureError,
)
from .jobs import (
    ACTIVE_STATUSES,
    COUNTER_FIELDS,
    DEFAULT_TARGET_COUNT,
    PHASE_ORDER,
    STAGES,
    STATUS_ALIASES,
    TARGET_COUNT_TIERS,
    TERMINAL_STATUSES,
    JobCounters,
    JobRecord,
    JobStatus,
    Stage,
    StageStatus,
)

__all__ = [
    "ActiveJobExistsError",
    "DispatchError",
    "InvalidJobInputError",
    "JobNotFoundError",
    "JobTransitionError",
    "RecoveryInProgressError",
    "ResearchJobError",
    "SignatureError",
    "ACTIVE_STATUSES",
    "COUNTER_FIELDS",
    "DEFAULT_TARGET_COUNT",
    "PHASE_ORDER",
    "STAGES",
    "STATUS_ALIASES",
    "TARGET_COUNT_TIERS",
    "TERMINAL_STATUSES",
    "JobCounters",
    "JobRecord",
    "JobStatus",
    "Stage",
    "StageStatus",
]
