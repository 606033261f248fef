"""
Experiment store: definitions, variant assignments and conversion events.

ExperimentStore is the repository interface injected into the engine.
InMemoryExperimentStore keeps everything in process; FileExperimentStore writes
experiments.json, assignments.csv and <experiment_id>/events.csv under a base
directory so state survives restarts. Events are read back as DataFrames.
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .schema import AssignmentMethod, ConversionEvent, Experiment, VariantAssignment

logger = logging.getLogger(__name__)

EVENT_COLUMNS = [
    "experiment_id", "customer_id", "tenant_id", "variant_id",
    "metric", "value", "timestamp", "metadata",
]
ASSIGNMENT_COLUMNS = [
    "experiment_id", "customer_id", "tenant_id", "variant_id", "assigned_at", "method",
]
_ID_COLUMNS = ["experiment_id", "customer_id", "tenant_id", "variant_id", "metric"]

AssignmentKey = Tuple[str, str, str]  # (tenant_id, customer_id, experiment_id)


def _key(tenant_id: str, customer_id: str, experiment_id: str) -> AssignmentKey:
    return tenant_id, customer_id, experiment_id


def _event_to_row(evt: ConversionEvent) -> dict:
    return {
        "experiment_id": evt.experiment_id,
        "customer_id": evt.customer_id,
        "tenant_id": evt.tenant_id,
        "variant_id": evt.variant_id,
        "metric": evt.metric,
        "value": float(evt.value),
        "timestamp": evt.timestamp,
        "metadata": json.dumps(evt.metadata, default=str) if evt.metadata else "",
    }


def _assignment_to_row(a: VariantAssignment) -> dict:
    return {
        "experiment_id": a.experiment_id,
        "customer_id": a.customer_id,
        "tenant_id": a.tenant_id,
        "variant_id": a.variant_id,
        "assigned_at": a.assigned_at,
        "method": a.method.value,
    }


def _filter_events(
    df: pd.DataFrame,
    metric: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=EVENT_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], format="ISO8601")
    if start_date:
        df = df[df["timestamp"] >= start_date]
    if end_date:
        df = df[df["timestamp"] <= end_date]
    if metric:
        df = df[df["metric"] == metric]
    return df.reset_index(drop=True)


class ExperimentStore(ABC):
    """Repository for experiment state."""

    @abstractmethod
    def save_experiment(self, experiment: Experiment) -> None:
        """Insert or replace an experiment definition."""

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        """Return a copy of the experiment, or None."""

    @abstractmethod
    def list_experiments(self) -> List[Experiment]:
        """Return copies of all experiments."""

    @abstractmethod
    def get_assignment(self, experiment_id: str, customer_id: str, tenant_id: str) -> Optional[VariantAssignment]:
        """Return the customer's assignment, or None."""

    @abstractmethod
    def save_assignment_if_absent(self, assignment: VariantAssignment) -> VariantAssignment:
        """
        Atomically store an assignment unless one exists for its key.

        Returns:
            The stored assignment: the new one, or the one already present
        """

    @abstractmethod
    def read_assignments(self, experiment_id: str) -> pd.DataFrame:
        """Assignments for one experiment as a DataFrame (ASSIGNMENT_COLUMNS)."""

    @abstractmethod
    def append_event(self, event: ConversionEvent) -> None:
        """Append a conversion event to its experiment's log."""

    @abstractmethod
    def read_events(
        self,
        experiment_id: str,
        metric: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """Conversion events for one experiment as a DataFrame (EVENT_COLUMNS)."""


class InMemoryExperimentStore(ExperimentStore):
    """Process-local store. Stored objects are copied in and out."""

    def __init__(self):
        self._lock = threading.RLock()
        self._experiments: Dict[str, Experiment] = {}
        self._assignments: Dict[AssignmentKey, VariantAssignment] = {}
        self._events: Dict[str, List[dict]] = {}

    def save_experiment(self, experiment):
        with self._lock:
            self._experiments[experiment.id] = copy.deepcopy(experiment)

    def get_experiment(self, experiment_id):
        with self._lock:
            exp = self._experiments.get(experiment_id)
            return copy.deepcopy(exp) if exp else None

    def list_experiments(self):
        with self._lock:
            return [copy.deepcopy(e) for e in self._experiments.values()]

    def get_assignment(self, experiment_id, customer_id, tenant_id):
        with self._lock:
            return self._assignments.get(_key(tenant_id, customer_id, experiment_id))

    def save_assignment_if_absent(self, assignment):
        key = _key(assignment.tenant_id, assignment.customer_id, assignment.experiment_id)
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing
            self._assignments[key] = assignment
            return assignment

    def read_assignments(self, experiment_id):
        with self._lock:
            rows = [_assignment_to_row(a) for a in self._assignments.values()
                    if a.experiment_id == experiment_id]
        return pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)

    def append_event(self, event):
        with self._lock:
            self._events.setdefault(event.experiment_id, []).append(_event_to_row(event))

    def read_events(self, experiment_id, metric=None, start_date=None, end_date=None):
        with self._lock:
            rows = list(self._events.get(experiment_id, []))
        df = pd.DataFrame(rows, columns=EVENT_COLUMNS)
        return _filter_events(df, metric, start_date, end_date)


class FileExperimentStore(ExperimentStore):
    """
    Directory-backed store.

    Layout under base_dir:
        experiments.json            id -> experiment dict, replaced atomically
        assignments.csv             one row per assignment, append-only
        <experiment_id>/events.csv  conversion events, append-only
    """

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._experiments: Dict[str, dict] = self._load_experiments()
        self._assignments: Dict[AssignmentKey, VariantAssignment] = self._load_assignments()
        logger.info(
            f"FileExperimentStore at {self.base_dir}: {len(self._experiments)} experiments, "
            f"{len(self._assignments)} assignments"
        )

    @property
    def _experiments_path(self) -> Path:
        return self.base_dir / "experiments.json"

    @property
    def _assignments_path(self) -> Path:
        return self.base_dir / "assignments.csv"

    def _events_path(self, experiment_id: str) -> Path:
        path = self.base_dir / experiment_id / "events.csv"
        if path.resolve().parent.parent != self.base_dir.resolve():
            raise ValueError(f"Experiment id escapes the store directory: {experiment_id!r}")
        return path

    def _load_experiments(self) -> Dict[str, dict]:
        if not self._experiments_path.exists():
            return {}
        with open(self._experiments_path) as f:
            return json.load(f)

    def _load_assignments(self) -> Dict[AssignmentKey, VariantAssignment]:
        if not self._assignments_path.exists():
            return {}
        df = pd.read_csv(self._assignments_path, dtype={c: str for c in _ID_COLUMNS[:4]})
        loaded = {}
        for row in df.itertuples(index=False):
            a = VariantAssignment(
                experiment_id=row.experiment_id,
                customer_id=row.customer_id,
                tenant_id=row.tenant_id,
                variant_id=row.variant_id,
                assigned_at=pd.to_datetime(row.assigned_at).to_pydatetime(),
                method=AssignmentMethod(row.method),
            )
            # first row for a key wins, matching save_assignment_if_absent
            loaded.setdefault(_key(a.tenant_id, a.customer_id, a.experiment_id), a)
        return loaded

    def _write_experiments(self) -> None:
        tmp = self._experiments_path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(self._experiments, f, indent=2)
        os.replace(tmp, self._experiments_path)

    @staticmethod
    def _append_rows(path: Path, rows: List[dict], columns: List[str]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame(rows, columns=columns)
        df.to_csv(path, mode="a", header=not path.exists(), index=False)

    def save_experiment(self, experiment):
        with self._lock:
            self._experiments[experiment.id] = experiment.to_dict()
            self._write_experiments()

    def get_experiment(self, experiment_id):
        with self._lock:
            d = self._experiments.get(experiment_id)
            return Experiment.from_dict(d) if d else None

    def list_experiments(self):
        with self._lock:
            return [Experiment.from_dict(d) for d in self._experiments.values()]

    def get_assignment(self, experiment_id, customer_id, tenant_id):
        with self._lock:
            return self._assignments.get(_key(tenant_id, customer_id, experiment_id))

    def save_assignment_if_absent(self, assignment):
        key = _key(assignment.tenant_id, assignment.customer_id, assignment.experiment_id)
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing
            self._append_rows(self._assignments_path, [_assignment_to_row(assignment)], ASSIGNMENT_COLUMNS)
            self._assignments[key] = assignment
            return assignment

    def read_assignments(self, experiment_id):
        with self._lock:
            rows = [_assignment_to_row(a) for a in self._assignments.values()
                    if a.experiment_id == experiment_id]
        return pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)

    def append_event(self, event):
        with self._lock:
            self._append_rows(self._events_path(event.experiment_id), [_event_to_row(event)], EVENT_COLUMNS)

    def read_events(self, experiment_id, metric=None, start_date=None, end_date=None):
        path = self._events_path(experiment_id)
        with self._lock:
            if not path.exists():
                df = pd.DataFrame(columns=EVENT_COLUMNS)
            else:
                df = pd.read_csv(
                    path,
                    dtype={c: str for c in _ID_COLUMNS},
                    keep_default_na=False,
                )
                df["value"] = df["value"].astype(float)
        return _filter_events(df, metric, start_date, end_date)
