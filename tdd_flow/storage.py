"""Line-delimited JSON record store.

Records live under ``<home>/.tdd-flow/projects/<projectId>/`` in one JSONL
file per record kind. Every write holds the project's lock (a thread lock plus
an ``flock`` on ``<projectId>/.lock``) and replaces the target file atomically,
so concurrent tool calls and separate server processes sharing the same home
cannot interleave a read-modify-write cycle.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar

from .models import (
    FEATURE_STATUSES,
    TDD_STAGES,
    TEST_METHOD_STATUSES,
    Feature,
    FileAssociation,
    TDDSession,
    TDDStage,
    TestExecutionResult,
    TestMethod,
    format_timestamp,
    restore_dates,
    utc_now,
)
from .tdd_logging import log_performance

logger = logging.getLogger("tdd_flow.storage")

FEATURES_FILE = "features.jsonl"
SESSIONS_FILE = "tdd-sessions.jsonl"
TEST_METHODS_FILE = "test-methods.jsonl"
FILE_ASSOCIATIONS_FILE = "session-files.jsonl"
LOCK_FILE = ".lock"

R = TypeVar("R")

_LOCKS: Dict[Path, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


def _thread_lock(project_dir: Path) -> threading.Lock:
    with _LOCKS_GUARD:
        lock = _LOCKS.get(project_dir)
        if lock is None:
            lock = threading.Lock()
            _LOCKS[project_dir] = lock
        return lock


@contextmanager
def _project_lock(project_dir: Path) -> Iterator[None]:
    """Hold the project's writer lock across threads and server processes."""
    with _thread_lock(project_dir):
        project_dir.mkdir(parents=True, exist_ok=True)
        with open(project_dir / LOCK_FILE, "a") as handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)


class StorageService:
    """Persist features, TDD sessions, test methods and file associations."""

    def __init__(self, home: Optional[Path | str] = None):
        base = Path(home).expanduser() if home else Path.home()
        self.base_path = (base / ".tdd-flow" / "projects").resolve()

    # ------------------------------------------------------------------
    # Low-level file handling
    # ------------------------------------------------------------------

    def project_dir(self, project_id: str) -> Path:
        if not project_id or not project_id.strip():
            raise ValueError("Project ID cannot be empty")
        if project_id in {".", ".."} or "/" in project_id or "\\" in project_id:
            raise ValueError(f"Invalid project id: {project_id}")
        return self.base_path / project_id

    def list_projects(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(item.name for item in self.base_path.iterdir() if item.is_dir())

    def _read_records(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []

        records: List[Dict[str, Any]] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed JSON line in {path}: {line[:200]}")
                continue
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object JSON line in {path}: {line[:200]}")
                continue
            records.append(restore_dates(item))
        return records

    def _write_records(self, path: Path, records: List[Dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = "".join(json.dumps(record, ensure_ascii=False) + "\n" for record in records)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _load_typed(self, path: Path, record_type: Type[R]) -> List[R]:
        items: List[R] = []
        for data in self._read_records(path):
            try:
                items.append(record_type.from_dict(data))  # type: ignore[attr-defined]
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"Skipping invalid {record_type.__name__} record in {path}: {exc}")
        return items

    def _upsert(self, filename: str, project_id: str, record: Any, kind: str) -> None:
        issues = record.validate()
        if issues:
            raise ValueError(f"Invalid {kind} data: {'; '.join(issues)}")

        project_dir = self.project_dir(project_id)
        path = project_dir / filename
        with _project_lock(project_dir):
            records = self._read_records(path)
            payload = record.to_dict()
            for index, existing in enumerate(records):
                if existing.get("id") == record.id:
                    records[index] = payload
                    break
            else:
                records.append(payload)
            self._write_records(path, _serializable(records))

    def _iter_project_files(self, filename: str) -> Iterator[tuple[str, Path]]:
        for project_id in self.list_projects():
            yield project_id, self.base_path / project_id / filename

    def _update_first(
        self,
        filename: str,
        record_type: Type[R],
        record_id: str,
        mutate: Callable[[R], None],
        kind: str,
    ) -> Optional[R]:
        """Apply ``mutate`` to the record with ``record_id`` and persist it.

        Returns the updated record, or None when no project holds the id.
        Nothing is written when the id is missing.
        """
        for _, path in self._iter_project_files(filename):
            with _project_lock(path.parent):
                records = self._read_records(path)
                for index, data in enumerate(records):
                    if data.get("id") != record_id:
                        continue
                    record = record_type.from_dict(data)  # type: ignore[attr-defined]
                    mutate(record)
                    issues = record.validate()  # type: ignore[attr-defined]
                    if issues:
                        raise ValueError(f"Invalid {kind} data: {'; '.join(issues)}")
                    records[index] = record.to_dict()  # type: ignore[attr-defined]
                    self._write_records(path, _serializable(records))
                    return record
        return None

    def _delete_first(self, filename: str, record_id: str) -> bool:
        for _, path in self._iter_project_files(filename):
            with _project_lock(path.parent):
                records = self._read_records(path)
                remaining = [record for record in records if record.get("id") != record_id]
                if len(remaining) != len(records):
                    self._write_records(path, _serializable(remaining))
                    return True
        return False

    def _find_first(self, filename: str, record_type: Type[R], record_id: str) -> Optional[R]:
        for _, path in self._iter_project_files(filename):
            for record in self._load_typed(path, record_type):
                if record.id == record_id:  # type: ignore[attr-defined]
                    return record
        return None

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    @log_performance("save_feature")
    def save_feature(self, feature: Feature) -> None:
        self._upsert(FEATURES_FILE, feature.project_id, feature, "feature")
        logger.debug(f"Saved feature {feature.id} in project {feature.project_id}")

    def load_feature(self, feature_id: str) -> Optional[Feature]:
        return self._find_first(FEATURES_FILE, Feature, feature_id)

    def list_features(self, project_id: str) -> List[Feature]:
        path = self.project_dir(project_id) / FEATURES_FILE
        return [f for f in self._load_typed(path, Feature) if f.project_id == project_id]

    def delete_feature(self, feature_id: str) -> bool:
        return self._delete_first(FEATURES_FILE, feature_id)

    def update_feature(self, feature_id: str, mutate: Callable[[Feature], None]) -> Optional[Feature]:
        def apply(feature: Feature) -> None:
            mutate(feature)
            feature.updated_at = utc_now()

        return self._update_first(FEATURES_FILE, Feature, feature_id, apply, "feature")

    def update_feature_status(self, feature_id: str, status: str) -> Optional[Feature]:
        if status not in FEATURE_STATUSES:
            raise ValueError(f"Invalid feature status: {status}")

        def apply(feature: Feature) -> None:
            feature.status = status

        return self.update_feature(feature_id, apply)

    # ------------------------------------------------------------------
    # TDD sessions
    # ------------------------------------------------------------------

    def save_tdd_session(self, session: TDDSession) -> None:
        self._upsert(SESSIONS_FILE, session.project_id, session, "TDD session")

    def load_tdd_session(self, session_id: str) -> Optional[TDDSession]:
        return self._find_first(SESSIONS_FILE, TDDSession, session_id)

    def list_tdd_sessions(self, project_id: str) -> List[TDDSession]:
        return self._load_typed(self.project_dir(project_id) / SESSIONS_FILE, TDDSession)

    def update_tdd_session_stage(
        self,
        session_id: str,
        stage: str,
        *,
        notes: Optional[str] = None,
        test_files: Optional[List[str]] = None,
        implementation_files: Optional[List[str]] = None,
    ) -> Optional[TDDSession]:
        """Move a session to ``stage``; returning to red after refactor counts a cycle."""
        if stage not in TDD_STAGES:
            raise ValueError(f"Invalid TDD stage: {stage}")

        def apply(session: TDDSession) -> None:
            if session.stage == TDDStage.REFACTOR.value and stage == TDDStage.RED.value:
                session.cycle_count += 1
            session.stage = stage
            session.updated_at = utc_now()
            if notes is not None:
                session.notes = notes
            if test_files is not None:
                session.test_files = list(test_files)
            if implementation_files is not None:
                session.implementation_files = list(implementation_files)

        return self._update_first(SESSIONS_FILE, TDDSession, session_id, apply, "TDD session")

    # ------------------------------------------------------------------
    # Test methods
    # ------------------------------------------------------------------

    def register_test_method(self, method: TestMethod) -> None:
        self._upsert(TEST_METHODS_FILE, method.project_id, method, "test method")

    def load_test_method(self, method_id: str) -> Optional[TestMethod]:
        return self._find_first(TEST_METHODS_FILE, TestMethod, method_id)

    def list_test_methods(self, feature_id: Optional[str] = None) -> List[TestMethod]:
        """List test methods for a feature, or across all projects when feature_id is empty."""
        methods: List[TestMethod] = []
        for _, path in self._iter_project_files(TEST_METHODS_FILE):
            for method in self._load_typed(path, TestMethod):
                if not feature_id or method.feature_id == feature_id:
                    methods.append(method)
        return methods

    def update_test_execution_result(self, method_id: str, result: TestExecutionResult) -> Optional[TestMethod]:
        issues = result.validate()
        if issues:
            raise ValueError(f"Invalid test execution result: {'; '.join(issues)}")

        def apply(method: TestMethod) -> None:
            method.execution_results = result
            method.last_executed_at = utc_now()
            method.status = "passed" if result.passed else "failed"

        return self._update_first(TEST_METHODS_FILE, TestMethod, method_id, apply, "test method")

    def update_test_method_status(self, method_id: str, status: str) -> Optional[TestMethod]:
        if status not in TEST_METHOD_STATUSES:
            raise ValueError(f"Invalid test method status: {status}")

        def apply(method: TestMethod) -> None:
            method.status = status

        return self._update_first(TEST_METHODS_FILE, TestMethod, method_id, apply, "test method")

    # ------------------------------------------------------------------
    # File associations
    # ------------------------------------------------------------------

    def save_file_association(self, association: FileAssociation) -> None:
        self._upsert(FILE_ASSOCIATIONS_FILE, association.project_id, association, "file association")

    def list_file_associations(self, feature_id: str) -> List[FileAssociation]:
        associations: List[FileAssociation] = []
        for _, path in self._iter_project_files(FILE_ASSOCIATIONS_FILE):
            associations.extend(a for a in self._load_typed(path, FileAssociation) if a.feature_id == feature_id)
        return associations

    def delete_file_association(self, association_id: str) -> bool:
        return self._delete_first(FILE_ASSOCIATIONS_FILE, association_id)


def _serializable(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Turn datetimes restored on read back into their on-disk string form."""
    def convert(value: Any) -> Any:
        if isinstance(value, datetime):
            return format_timestamp(value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [convert(v) for v in value]
        return value

    return [convert(record) for record in records]
