"""Tests for published service artifacts and the generated driver."""

import json

import pandas as pd
import pytest

from libs.scoring.descriptors import (
    DRIVER_DESCRIPTOR,
    DRIVER_SCRIPT,
    SCHEMA_MANIFEST,
    iter_service_dirs,
    load_artifacts,
    write_artifacts,
)
from libs.scoring.driver import build_argument_parser, import_entry_point, load_registration, run_driver
from libs.scoring.errors import RegistrationStateError
from libs.scoring.schema import SchemaEntry
from training.churn_classifier.score import score


def test_write_and_load_artifacts(churn_registration, tmp_path):
    service_dir = write_artifacts(churn_registration, tmp_path / "artifacts")

    assert service_dir == tmp_path / "artifacts" / "churn-batch"
    for filename in (DRIVER_SCRIPT, DRIVER_DESCRIPTOR, SCHEMA_MANIFEST):
        assert (service_dir / filename).is_file()

    descriptor = json.loads((service_dir / DRIVER_DESCRIPTOR).read_text())
    assert "script" not in descriptor
    assert descriptor["entry_point"] == "training.churn_classifier.score:score"

    loaded = load_artifacts(service_dir)
    assert loaded.manifest == churn_registration.manifest
    assert loaded.driver.driver_id == churn_registration.driver.driver_id
    assert loaded.driver.script == churn_registration.driver.script


def test_load_artifacts_rejects_unknown_manifest_version(churn_registration, tmp_path):
    service_dir = write_artifacts(churn_registration, tmp_path)
    manifest = json.loads((service_dir / SCHEMA_MANIFEST).read_text())
    manifest["manifest_version"] = 99
    (service_dir / SCHEMA_MANIFEST).write_text(json.dumps(manifest))

    with pytest.raises(ValueError):
        load_artifacts(service_dir)


def test_iter_service_dirs_skips_incomplete_directories(churn_registration, tmp_path):
    write_artifacts(churn_registration, tmp_path)
    (tmp_path / "half-written").mkdir()
    (tmp_path / "half-written" / SCHEMA_MANIFEST).write_text("{}")

    assert list(iter_service_dirs(tmp_path)) == [tmp_path / "churn-batch"]
    assert list(iter_service_dirs(tmp_path / "missing")) == []


def test_import_entry_point():
    assert import_entry_point("training.churn_classifier.score:score") is score

    with pytest.raises(RegistrationStateError):
        import_entry_point("training.churn_classifier.score")
    with pytest.raises(RegistrationStateError):
        import_entry_point("no_such_module_here:score")
    with pytest.raises(RegistrationStateError):
        import_entry_point("training.churn_classifier.score:missing")


def test_load_registration_registers_again(adapter, churn_registration, tmp_path):
    service_dir = write_artifacts(churn_registration, tmp_path)

    loaded = load_registration(service_dir, adapter)

    assert loaded.manifest == churn_registration.manifest
    assert loaded.driver.driver_id != churn_registration.driver.driver_id
    assert loaded.driver.dependencies == ["training/churn_classifier"]


def test_load_registration_rejects_local_functions(adapter, tmp_path):
    def scoring(data, result):
        pass

    published = adapter.register(
        scoring,
        [SchemaEntry.dataset("data")],
        [SchemaEntry.file("result")],
        service_name="local-function",
    )
    service_dir = write_artifacts(published, tmp_path)

    with pytest.raises(RegistrationStateError):
        load_registration(service_dir, adapter)


def test_argument_parser_mirrors_manifest(churn_registration):
    parser = build_argument_parser(churn_registration)
    args = parser.parse_args(["--data", "in.csv", "--model", "m", "--threshold", "0.4"])

    assert args.data == "in.csv"
    assert args.threshold == "0.4"
    assert args.result is None

    with pytest.raises(SystemExit):
        parser.parse_args(["--data", "in.csv"])


def test_run_driver_scores_and_reports(churn_registration, customers_csv, model_dir, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("ML_BATCH_OUTPUT_ROOT", str(tmp_path / "outputs"))
    service_dir = write_artifacts(churn_registration, tmp_path / "artifacts")
    destination = tmp_path / "scored.csv"

    exit_code = run_driver(
        str(service_dir / DRIVER_SCRIPT),
        ["--data", str(customers_csv), "--model", str(model_dir), "--threshold", "0.5", "--result", str(destination)],
    )

    assert exit_code == 0
    assert '"status": "succeeded"' in capsys.readouterr().out
    assert len(pd.read_csv(destination)) == 25


def test_run_driver_reports_failures(churn_registration, model_dir, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("ML_BATCH_OUTPUT_ROOT", str(tmp_path / "outputs"))
    service_dir = write_artifacts(churn_registration, tmp_path / "artifacts")

    exit_code = run_driver(
        str(service_dir / DRIVER_SCRIPT),
        ["--data", str(tmp_path / "missing.csv"), "--model", str(model_dir), "--threshold", "0.5"],
    )

    assert exit_code == 1
    err = capsys.readouterr().err
    assert '"status": "failed"' in err
    assert '"error_category": "data_access"' in err
