"""Tests for running batch scoring jobs."""

from pathlib import Path
import threading

import pandas as pd
import pytest

from libs.scoring.adapter import JobStatus, ScoringAdapter, ScoringRequest
from libs.scoring.errors import (
    DataAccessError,
    ExecutionError,
    RegistrationStateError,
    SchemaMismatchError,
)
from libs.scoring.schema import SchemaEntry
from libs.scoring.storage import LocalStorageClient


def _request(customers_csv, model_dir, **extra):
    values = {"data": str(customers_csv), "model": str(model_dir), "threshold": 0.5}
    values.update(extra)
    return ScoringRequest(values)


def test_invoke_writes_result(adapter, churn_registration, customers_csv, model_dir, tmp_path, publisher):
    destination = tmp_path / "scored" / "result.csv"

    result = adapter.invoke(churn_registration, _request(customers_csv, model_dir, result=str(destination)))

    assert result.status == JobStatus.SUCCEEDED
    assert result.succeeded
    assert result.outputs == {"result": str(destination)}
    scored = pd.read_csv(destination)
    assert list(scored.columns) == ["customer_id", "churn_probability", "churn_predicted"]
    assert len(scored) == 25
    assert scored["churn_probability"].between(0, 1).all()

    assert publisher.outcomes[-1]["outcome"] == "succeeded"
    assert publisher.outcomes[-1]["job_id"] == result.job_id


def test_invoke_uses_default_output_location(adapter, churn_registration, customers_csv, model_dir, tmp_path):
    result = adapter.invoke(churn_registration, _request(customers_csv, model_dir))

    expected = tmp_path / "outputs" / "churn-batch" / result.job_id / "result"
    assert result.outputs["result"] == str(expected)
    assert expected.is_file()


def test_invoke_accepts_plain_mapping(adapter, churn_registration, customers_csv, model_dir):
    values = {"data": str(customers_csv), "model": str(model_dir), "threshold": "0.9"}
    result = adapter.invoke(churn_registration, values)
    assert result.succeeded


def test_missing_input_fails_with_data_access_error(adapter, churn_registration, model_dir, tmp_path, publisher):
    destination = tmp_path / "scored" / "result.csv"
    missing = tmp_path / "does-not-exist.csv"

    with pytest.raises(DataAccessError) as exc_info:
        adapter.invoke(churn_registration, _request(missing, model_dir, result=str(destination)))

    error = exc_info.value
    assert error.parameter == "data"
    assert error.result.status == JobStatus.FAILED
    assert error.result.error_category == "data_access"
    assert not destination.exists()
    assert publisher.outcomes[-1]["outcome"] == "failed"
    assert adapter.get_job_status(error.result.job_id).status == JobStatus.FAILED


def test_bad_primitive_value_is_data_access_error(adapter, churn_registration, customers_csv, model_dir):
    with pytest.raises(DataAccessError) as exc_info:
        adapter.invoke(churn_registration, _request(customers_csv, model_dir, threshold="high"))
    assert exc_info.value.parameter == "threshold"


def test_request_names_are_validated(adapter, churn_registration, customers_csv):
    request = ScoringRequest({"data": str(customers_csv), "unexpected": 1})

    with pytest.raises(SchemaMismatchError) as exc_info:
        adapter.invoke(churn_registration, request)

    assert exc_info.value.names == ["model", "threshold", "unexpected"]
    assert exc_info.value.result.status == JobStatus.FAILED


def test_function_failure_is_execution_error(adapter, churn_registration, customers_csv, model_dir, tmp_path):
    destination = tmp_path / "scored" / "result.csv"

    with pytest.raises(ExecutionError) as exc_info:
        adapter.invoke(churn_registration, _request(customers_csv, model_dir, threshold=2.0, result=str(destination)))

    error = exc_info.value
    assert "threshold must be within [0, 1]" in error.message
    assert isinstance(error.__cause__, ValueError)
    assert error.result.error_category == "execution"
    assert not destination.exists()


def test_unwritten_output_is_execution_error(adapter, tmp_path):
    def lazy(data, result):
        pass

    registration = adapter.register(
        lazy,
        [SchemaEntry.file("data")],
        [SchemaEntry.file("result")],
        service_name="lazy",
    )
    source = tmp_path / "in.txt"
    source.write_text("x")

    with pytest.raises(ExecutionError) as exc_info:
        adapter.invoke(registration, {"data": str(source)})
    assert "result" in exc_info.value.message


def test_outputs_are_all_or_nothing(tmp_path, metrics):
    class FailingSecondUpload(LocalStorageClient):
        def upload(self, local_path, reference):
            if reference.endswith("second.txt"):
                from libs.scoring.errors import StorageError
                raise StorageError("disk full")
            return super().upload(local_path, reference)

    def write_both(first, second):
        Path(first).write_text("1")
        Path(second).write_text("2")

    adapter = ScoringAdapter(storage_client=FailingSecondUpload(), output_root=str(tmp_path / "out"), metrics=metrics)
    registration = adapter.register(
        write_both,
        [],
        [SchemaEntry.file("first"), SchemaEntry.file("second")],
        service_name="pair",
    )
    first = tmp_path / "dest" / "first.txt"
    second = tmp_path / "dest" / "second.txt"

    with pytest.raises(DataAccessError) as exc_info:
        adapter.invoke(registration, {"first": str(first), "second": str(second)})

    assert exc_info.value.parameter == "second"
    assert not first.exists()
    assert not second.exists()


def test_invoke_rejects_unknown_registration(adapter, churn_registration, metrics):
    other = ScoringAdapter(metrics=metrics)
    with pytest.raises(RegistrationStateError):
        other.invoke(churn_registration, {})


def test_invoke_rejects_invalid_registration(adapter):
    from libs.scoring.errors import SchemaMismatchError as Mismatch

    def scoring(data):
        pass

    with pytest.raises(Mismatch) as exc_info:
        adapter.register(scoring, [], [], service_name="invalid")

    with pytest.raises(RegistrationStateError):
        adapter.invoke(exc_info.value.registration, {})


def test_job_status_tracking(adapter, churn_registration, customers_csv, model_dir):
    first = adapter.invoke(churn_registration, _request(customers_csv, model_dir))
    second = adapter.invoke(churn_registration, _request(customers_csv, model_dir))

    jobs = adapter.list_jobs("churn-batch")
    assert [job.job_id for job in jobs] == [first.job_id, second.job_id]
    assert adapter.list_jobs("other-service") == []

    forgotten = adapter.forget_job(first.job_id)
    assert forgotten.job_id == first.job_id
    assert adapter.get_job_status(first.job_id) is None
    assert adapter.get_job_status("unknown") is None


def test_concurrent_jobs_use_separate_outputs(adapter, churn_registration, customers_csv, model_dir):
    results = []
    errors = []

    def run():
        try:
            results.append(adapter.invoke(churn_registration, _request(customers_csv, model_dir)))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    destinations = {result.outputs["result"] for result in results}
    assert len(destinations) == 4
    assert all(Path(destination).is_file() for destination in destinations)


def test_telemetry_failure_does_not_fail_job(tmp_path, metrics, customers_csv, model_dir):
    class BrokenPublisher:
        def publish_service_registered(self, service_name, driver_id):
            raise ConnectionError("redis down")

        def publish_job_outcome(self, **kwargs):
            raise ConnectionError("redis down")

    from training.churn_classifier.score import INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, score

    adapter = ScoringAdapter(output_root=str(tmp_path / "out"), event_publisher=BrokenPublisher(), metrics=metrics)
    registration = adapter.register(score, INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, service_name="churn-batch")

    assert adapter.invoke(registration, _request(customers_csv, model_dir)).succeeded


def test_rollback_restores_existing_destinations(tmp_path, metrics):
    from libs.scoring.errors import StorageError

    class FailingFirstSecondUpload(LocalStorageClient):
        def __init__(self):
            self.second_uploads = 0

        def upload(self, local_path, reference):
            if reference.endswith("second.txt"):
                self.second_uploads += 1
                if self.second_uploads == 1:
                    raise StorageError("disk full")
            return super().upload(local_path, reference)

    def write_both(results, second):
        Path(results).mkdir()
        (Path(results) / "today.csv").write_text("id\n2\n")
        Path(second).write_text("new")

    adapter = ScoringAdapter(
        storage_client=FailingFirstSecondUpload(),
        staging_dir=str(tmp_path / "staging"),
        metrics=metrics,
    )
    registration = adapter.register(
        write_both,
        [],
        [SchemaEntry.file("results"), SchemaEntry.file("second")],
        service_name="daily",
    )
    results = tmp_path / "dest" / "results"
    results.mkdir(parents=True)
    (results / "yesterday.csv").write_text("id\n1\n")
    second = tmp_path / "dest" / "second.txt"
    second.write_text("old")

    with pytest.raises(DataAccessError) as exc_info:
        adapter.invoke(registration, {"results": str(results), "second": str(second)})

    assert exc_info.value.parameter == "second"
    assert (results / "yesterday.csv").read_text() == "id\n1\n"
    assert not (results / "today.csv").exists()
    assert second.read_text() == "old"


def test_unresolvable_input_paths_fail_the_job(adapter, churn_registration, model_dir):
    for bad in ["~no_such_user_zz/in.csv", "in\x00.csv"]:
        with pytest.raises(DataAccessError) as exc_info:
            adapter.invoke(churn_registration, {"data": bad, "model": str(model_dir), "threshold": 0.5})

        error = exc_info.value
        assert error.parameter == "data"
        assert adapter.get_job_status(error.result.job_id).status == JobStatus.FAILED


def test_unexpected_failure_reaches_terminal_state(tmp_path, metrics, publisher):
    class ExplodingStorage(LocalStorageClient):
        def check_writable(self, reference):
            raise RuntimeError("backend crashed")

    def noop(result):
        pass

    adapter = ScoringAdapter(
        storage_client=ExplodingStorage(),
        output_root=str(tmp_path / "out"),
        event_publisher=publisher,
        metrics=metrics,
    )
    registration = adapter.register(noop, [], [SchemaEntry.file("result")], service_name="noop")

    with pytest.raises(ExecutionError) as exc_info:
        adapter.invoke(registration, {})

    error = exc_info.value
    assert isinstance(error.__cause__, RuntimeError)
    assert "backend crashed" in error.message
    assert error.result.status == JobStatus.FAILED
    assert publisher.outcomes[-1]["outcome"] == "failed"
    assert adapter.forget_job(error.result.job_id).status == JobStatus.FAILED


def test_unusable_staging_dir_is_data_access_error(tmp_path, metrics, customers_csv, model_dir):
    from training.churn_classifier.score import INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, score

    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    adapter = ScoringAdapter(output_root=str(tmp_path / "out"), staging_dir=str(blocker), metrics=metrics)
    registration = adapter.register(score, INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, service_name="churn-batch")

    with pytest.raises(DataAccessError) as exc_info:
        adapter.invoke(registration, _request(customers_csv, model_dir))

    assert exc_info.value.parameter == "staging_dir"
    assert adapter.get_job_status(exc_info.value.result.job_id).status == JobStatus.FAILED


def test_finished_jobs_are_capped(tmp_path, metrics, customers_csv, model_dir):
    from training.churn_classifier.score import INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, score

    adapter = ScoringAdapter(output_root=str(tmp_path / "out"), max_finished_jobs=2, metrics=metrics)
    registration = adapter.register(score, INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, service_name="churn-batch")

    job_ids = [adapter.invoke(registration, _request(customers_csv, model_dir)).job_id for _ in range(3)]

    assert [job.job_id for job in adapter.list_jobs()] == job_ids[1:]
    assert adapter.get_job_status(job_ids[0]) is None

    assert adapter.clear_jobs() == 2
    assert adapter.list_jobs() == []


def test_unregistered_function_cannot_be_invoked(adapter, churn_registration, customers_csv, model_dir):
    removed = adapter.unregister(churn_registration)

    assert removed.service_name == "churn-batch"
    assert adapter.unregister(churn_registration) is None
    with pytest.raises(RegistrationStateError):
        adapter.invoke(churn_registration, _request(customers_csv, model_dir))
