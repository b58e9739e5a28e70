"""Unit tests for the line-delimited JSON record store."""

import json
import multiprocessing

import pytest

from tdd_flow.models import Feature, FileAssociation, TDDSession, TestExecutionResult, TestMethod, utc_now
from tdd_flow.storage import FEATURES_FILE, LOCK_FILE, SESSIONS_FILE, TEST_METHODS_FILE, StorageService


def make_feature(feature_id="f-1", project_id="proj", name="Login"):
    return Feature(
        id=feature_id,
        project_id=project_id,
        name=name,
        description="User can log in",
        acceptance_criteria=["valid credentials are accepted"],
    )


def make_method(method_id="m-1", feature_id="f-1", project_id="proj"):
    return TestMethod(
        id=method_id,
        feature_id=feature_id,
        project_id=project_id,
        name="test_login",
        file_path="tests/test_login.py",
        framework="pytest",
    )


class TestStorageLayout:
    """Test cases for on-disk layout."""

    def test_base_path(self, tmp_path):
        """Test that records live under <home>/.tdd-flow/projects."""
        storage = StorageService(tmp_path)
        assert storage.base_path == (tmp_path / ".tdd-flow" / "projects").resolve()

    def test_defaults_to_home_directory(self, tmp_path, monkeypatch):
        """Test the home-directory default."""
        monkeypatch.setenv("HOME", str(tmp_path))
        storage = StorageService()
        assert storage.base_path == (tmp_path / ".tdd-flow" / "projects").resolve()

    @pytest.mark.parametrize("project_id", ["", "   ", "..", "a/b"])
    def test_rejects_bad_project_ids(self, storage, project_id):
        """Test that project ids cannot escape the base directory."""
        with pytest.raises(ValueError):
            storage.project_dir(project_id)

    def test_one_json_object_per_line(self, storage):
        """Test the JSONL format of saved records."""
        storage.save_feature(make_feature("f-1"))
        storage.save_feature(make_feature("f-2", name="Logout"))

        lines = (storage.project_dir("proj") / FEATURES_FILE).read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["id"] == "f-1"
        assert json.loads(lines[1])["name"] == "Logout"

    def test_list_projects(self, storage):
        """Test that every project with records is listed."""
        assert storage.list_projects() == []
        storage.save_feature(make_feature(project_id="beta"))
        storage.save_feature(make_feature("f-2", project_id="alpha"))
        assert storage.list_projects() == ["alpha", "beta"]


class TestFeatureRecords:
    """Test cases for feature persistence."""

    def test_save_and_list_round_trip(self, storage):
        """Test that a saved feature reads back identical, timestamps included."""
        feature = make_feature()
        storage.save_feature(feature)

        listed = storage.list_features("proj")
        assert listed == [feature]
        assert listed[0].created_at == feature.created_at

    def test_save_replaces_existing_id(self, storage):
        """Test upsert semantics."""
        storage.save_feature(make_feature())
        storage.save_feature(make_feature(name="Renamed"))

        features = storage.list_features("proj")
        assert len(features) == 1
        assert features[0].name == "Renamed"

    def test_invalid_feature_is_not_written(self, storage):
        """Test that validation runs before anything touches disk."""
        with pytest.raises(ValueError, match="Invalid feature data"):
            storage.save_feature(make_feature(name=""))
        assert not (storage.base_path / "proj").exists()

    def test_load_searches_all_projects(self, storage):
        """Test lookup by id without a project."""
        storage.save_feature(make_feature("f-9", project_id="other"))
        assert storage.load_feature("f-9").project_id == "other"
        assert storage.load_feature("missing") is None

    def test_update_missing_feature_creates_nothing(self, storage):
        """Test that updating an unknown id is a no-op."""
        storage.save_feature(make_feature())
        before = (storage.project_dir("proj") / FEATURES_FILE).read_text(encoding="utf-8")

        assert storage.update_feature_status("nope", "completed") is None
        assert (storage.project_dir("proj") / FEATURES_FILE).read_text(encoding="utf-8") == before

    def test_update_feature_status(self, storage):
        """Test status update and updatedAt refresh."""
        feature = make_feature()
        storage.save_feature(feature)

        updated = storage.update_feature_status("f-1", "in_progress")
        assert updated.status == "in_progress"
        assert updated.updated_at >= feature.updated_at
        assert storage.load_feature("f-1").status == "in_progress"

    def test_update_rejects_unknown_status(self, storage):
        """Test status validation."""
        with pytest.raises(ValueError, match="Invalid feature status"):
            storage.update_feature_status("f-1", "done")

    def test_delete_feature(self, storage):
        """Test deletion by id."""
        storage.save_feature(make_feature())
        assert storage.delete_feature("f-1") is True
        assert storage.delete_feature("f-1") is False
        assert storage.list_features("proj") == []

    def test_malformed_lines_are_skipped(self, storage):
        """Test that a corrupt line does not hide the valid records."""
        storage.save_feature(make_feature())
        path = storage.project_dir("proj") / FEATURES_FILE
        with path.open("a", encoding="utf-8") as handle:
            handle.write("{not json\n")
            handle.write("[1, 2]\n")

        assert [f.id for f in storage.list_features("proj")] == ["f-1"]


class TestSessionRecords:
    """Test cases for TDD session persistence."""

    def test_stage_cycle_counts_refactor_to_red(self, storage):
        """Test that returning to red after refactor completes a cycle."""
        storage.save_tdd_session(TDDSession(id="s-1", feature_id="f-1", project_id="proj", developer="dev"))

        storage.update_tdd_session_stage("s-1", "green")
        storage.update_tdd_session_stage("s-1", "refactor")
        session = storage.update_tdd_session_stage("s-1", "red", notes="next", test_files=["a.test.ts"])

        assert session.stage == "red"
        assert session.cycle_count == 1
        assert session.notes == "next"
        assert session.test_files == ["a.test.ts"]
        assert storage.load_tdd_session("s-1").cycle_count == 1

    def test_red_to_red_does_not_count(self, storage):
        """Test that only refactor -> red counts."""
        storage.save_tdd_session(TDDSession(id="s-1", feature_id="f-1", project_id="proj", developer="dev"))
        assert storage.update_tdd_session_stage("s-1", "red").cycle_count == 0

    def test_unknown_session(self, storage):
        """Test updating a missing session."""
        assert storage.update_tdd_session_stage("nope", "green") is None
        assert not (storage.base_path / "proj" / SESSIONS_FILE).exists()

    def test_invalid_stage(self, storage):
        """Test stage validation."""
        with pytest.raises(ValueError, match="Invalid TDD stage"):
            storage.update_tdd_session_stage("s-1", "blue")

    def test_list_sessions(self, storage):
        """Test listing sessions of a project."""
        storage.save_tdd_session(TDDSession(id="s-1", feature_id="f", project_id="proj", developer="a"))
        storage.save_tdd_session(TDDSession(id="s-2", feature_id="f", project_id="proj", developer="b"))
        assert [s.id for s in storage.list_tdd_sessions("proj")] == ["s-1", "s-2"]


class TestTestMethodRecords:
    """Test cases for test method persistence."""

    def test_register_and_filter_by_feature(self, storage):
        """Test listing methods with and without a feature filter."""
        storage.register_test_method(make_method("m-1", "f-1"))
        storage.register_test_method(make_method("m-2", "f-2"))

        assert [m.id for m in storage.list_test_methods("f-1")] == ["m-1"]
        assert len(storage.list_test_methods()) == 2

    def test_execution_result_sets_status(self, storage):
        """Test that recording a result updates status and lastExecutedAt."""
        storage.register_test_method(make_method())

        failed = storage.update_test_execution_result("m-1", TestExecutionResult(duration=5, passed=False, error="x"))
        assert failed.status == "failed"
        assert failed.last_executed_at is not None
        assert failed.execution_results.error == "x"

        passed = storage.update_test_execution_result("m-1", TestExecutionResult(duration=3, passed=True))
        assert passed.status == "passed"
        assert storage.load_test_method("m-1").execution_results.duration == 3

    def test_execution_result_validation(self, storage):
        """Test that invalid results are rejected before lookup."""
        with pytest.raises(ValueError, match="Invalid test execution result"):
            storage.update_test_execution_result("m-1", TestExecutionResult(duration=-1, passed=True))

    def test_status_update(self, storage):
        """Test direct status updates."""
        storage.register_test_method(make_method())
        assert storage.update_test_method_status("m-1", "skipped").status == "skipped"
        assert storage.update_test_method_status("missing", "skipped") is None
        with pytest.raises(ValueError):
            storage.update_test_method_status("m-1", "broken")

    def test_method_file_name(self, storage):
        """Test that test methods have their own file."""
        storage.register_test_method(make_method())
        assert (storage.project_dir("proj") / TEST_METHODS_FILE).is_file()


class TestFileAssociationRecords:
    """Test cases for file associations."""

    def test_save_list_delete(self, storage):
        """Test the association lifecycle."""
        now = utc_now()
        association = FileAssociation(id="a-1", feature_id="f-1", project_id="proj", file_path="src/login.ts",
                                      file_type="implementation", created_at=now, last_modified=now)
        storage.save_file_association(association)

        assert storage.list_file_associations("f-1") == [association]
        assert storage.list_file_associations("f-2") == []
        assert storage.delete_file_association("a-1") is True
        assert storage.list_file_associations("f-1") == []


def save_features(home, worker, count):
    storage = StorageService(home)
    for index in range(count):
        storage.save_feature(make_feature(f"w{worker}-{index}", "p1", name=f"Feature {worker}-{index}"))


class TestConcurrentWriters:
    """Test cases for writers in separate server processes."""

    def test_processes_do_not_lose_records(self, tmp_path):
        """Test that every process's records survive interleaved saves."""
        context = multiprocessing.get_context("fork")
        workers = [context.Process(target=save_features, args=(tmp_path, worker, 25)) for worker in range(4)]
        for process in workers:
            process.start()
        for process in workers:
            process.join(timeout=60)

        assert [process.exitcode for process in workers] == [0, 0, 0, 0]
        assert len(StorageService(tmp_path).list_features("p1")) == 100

    def test_lock_file_stays_out_of_projects(self, storage):
        """Test that the lock file does not look like a project."""
        storage.save_feature(make_feature())
        assert (storage.base_path / "proj" / LOCK_FILE).exists()
        assert storage.list_projects() == ["proj"]
