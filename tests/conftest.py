"""Shared fixtures for scoring tests."""

from typing import Any, Dict, List

import pytest
from prometheus_client import CollectorRegistry

from libs.common.metrics import MetricsCollector
from libs.scoring.adapter import ScoringAdapter
from training.churn_classifier.data_generator import ChurnDataGenerator
from training.churn_classifier.model import ChurnClassifier
from training.churn_classifier.score import INPUT_SCHEMA, OUTPUT_SCHEMA, PARAMETERS, score


class RecordingPublisher:
    """Stands in for ``EventPublisher`` and keeps what would be published."""

    def __init__(self):
        self.registered: List[Dict[str, Any]] = []
        self.outcomes: List[Dict[str, Any]] = []

    def publish_service_registered(self, service_name: str, driver_id: str) -> None:
        self.registered.append({"service_name": service_name, "driver_id": driver_id})

    def publish_job_outcome(self, **kwargs: Any) -> None:
        self.outcomes.append(kwargs)


@pytest.fixture(scope="session")
def model_dir(tmp_path_factory):
    """A trained churn model saved as an artifact directory."""
    df = ChurnDataGenerator(seed=7).generate(n_samples=300)
    model = ChurnClassifier().fit(df)
    return model.save_model(tmp_path_factory.mktemp("models") / "churn")


@pytest.fixture
def customers_csv(tmp_path):
    """Unlabelled customers to score."""
    path = tmp_path / "customers.csv"
    ChurnDataGenerator(seed=11).generate(n_samples=25, with_labels=False).to_csv(path, index=False)
    return path


@pytest.fixture
def metrics():
    return MetricsCollector("test-batch-scoring", registry=CollectorRegistry())


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def adapter(tmp_path, metrics, publisher):
    return ScoringAdapter(
        output_root=str(tmp_path / "outputs"),
        staging_dir=str(tmp_path / "staging"),
        event_publisher=publisher,
        metrics=metrics,
    )


@pytest.fixture
def churn_registration(adapter):
    """The churn scoring function registered as ``churn-batch``."""
    return adapter.register(
        score,
        INPUT_SCHEMA,
        OUTPUT_SCHEMA,
        PARAMETERS,
        dependencies=["training/churn_classifier"],
        service_name="churn-batch",
    )
