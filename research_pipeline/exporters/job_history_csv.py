from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Iterable

import pandas as pd

from research_pipeline.domain import COUNTER_FIELDS, JobRecord

HISTORY_COLUMNS = [
    "job_id",
    "status",
    "niche_query",
    "service_area",
    "target_count",
    *COUNTER_FIELDS,
    "retry_count",
    "created_at",
    "completed_at",
    "error_message",
]


def job_history_frame(records: Iterable[JobRecord]) -> pd.DataFrame:
    rows = []
    for record in records:
        rows.append({
            "job_id": record.id,
            "status": record.status.value,
            "niche_query": record.niche_query,
            "service_area": record.service_area or "",
            "target_count": record.target_count,
            **asdict(record.counters),
            "retry_count": record.retry_count,
            "created_at": record.created_at.isoformat(),
            "completed_at": record.completed_at.isoformat() if record.completed_at else "",
            "error_message": record.error_message or "",
        })
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def export_job_history(path: Path, records: Iterable[JobRecord]) -> Path:
    df = job_history_frame(records)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
