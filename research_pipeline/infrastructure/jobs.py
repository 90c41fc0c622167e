"""Infrastructure layer for research job persistence."""
from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from typing import Any, Protocol


class JobRepository(Protocol):
    """Document-store contract for research job records.

    Documents are plain dicts keyed by ``id``. Updates are applied field by field
    and atomically; ``expected_statuses`` turns an update into a conditional
    write that only applies while the stored status is one of the given values.
    """

    def next_job_id(self) -> str: ...

    def insert(self, document: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, job_id: str) -> dict[str, Any] | None: ...

    def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None = None,
    ) -> dict[str, Any] | None: ...

    def latest_for_workspace(self, workspace_id: str) -> dict[str, Any] | None: ...

    def list_for_workspace(self, workspace_id: str) -> list[dict[str, Any]]: ...

    def list_by_status(self, statuses: Iterable[str]) -> list[dict[str, Any]]: ...

    def reset(self) -> None: ...


class InMemoryJobRepository:
    """Thread-safe in-memory document store used by the API process and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._order: list[str] = []
        self._job_counter = 0
        self._lock = threading.Lock()

    def next_job_id(self) -> str:
        with self._lock:
            self._job_counter += 1
            return f"job-{self._job_counter:05d}"

    def insert(self, document: dict[str, Any]) -> dict[str, Any]:
        job_id = str(document["id"])
        with self._lock:
            if job_id in self._documents:
                raise ValueError(f"job {job_id} already exists")
            self._documents[job_id] = copy.deepcopy(document)
            self._order.append(job_id)
            return copy.deepcopy(self._documents[job_id])

    def get(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get(job_id)
            return copy.deepcopy(document) if document is not None else None

    def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None = None,
    ) -> dict[str, Any] | None:
        """Apply ``changes`` and return the new document.

        Returns ``None`` when the conditional check fails; raises ``KeyError``
        for an unknown job.
        """

        with self._lock:
            document = self._documents.get(job_id)
            if document is None:
                raise KeyError(job_id)
            if expected_statuses is not None and document.get("status") not in set(expected_statuses):
                return None
            document.update(copy.deepcopy(changes))
            return copy.deepcopy(document)

    def latest_for_workspace(self, workspace_id: str) -> dict[str, Any] | None:
        with self._lock:
            for job_id in reversed(self._order):
                document = self._documents[job_id]
                if document.get("workspace_id") == workspace_id:
                    return copy.deepcopy(document)
        return None

    def list_for_workspace(self, workspace_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(self._documents[job_id])
                for job_id in reversed(self._order)
                if self._documents[job_id].get("workspace_id") == workspace_id
            ]

    def list_by_status(self, statuses: Iterable[str]) -> list[dict[str, Any]]:
        wanted = set(statuses)
        with self._lock:
            return [
                copy.deepcopy(self._documents[job_id])
                for job_id in self._order
                if self._documents[job_id].get("status") in wanted
            ]

    def reset(self) -> None:
        with self._lock:
            self._documents.clear()
            self._order.clear()
            self._job_counter = 0
