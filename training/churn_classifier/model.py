"""Churn classifier model.

A scikit-learn pipeline (scaling + estimator) over the activity features.
Saved models are directories holding ``model.joblib`` and a small
``metadata.json``; batch scoring treats that directory as an opaque artifact
and only calls ``ChurnClassifier.load_model``.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, roc_auc_score
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
import structlog

from .data_generator import FEATURE_COLUMNS, LABEL_COLUMN

logger = structlog.get_logger("churn_classifier")

MODEL_FILE = "model.joblib"
METADATA_FILE = "metadata.json"


class ChurnClassifier:
    """Binary churn classifier."""

    def __init__(self, model_type: str = "logistic_regression", **model_kwargs: Any):
        self.model_type = model_type
        self.model_kwargs = model_kwargs
        self.feature_names: List[str] = list(FEATURE_COLUMNS)
        self.pipeline: Optional[Pipeline] = None

    @property
    def is_fitted(self) -> bool:
        return self.pipeline is not None

    def _create_estimator(self):
        if self.model_type == "logistic_regression":
            return LogisticRegression(max_iter=1000, **self.model_kwargs)
        elif self.model_type == "random_forest":
            return RandomForestClassifier(random_state=42, **self.model_kwargs)
        raise ValueError(f"Unknown model type: {self.model_type}")

    def _features(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [column for column in self.feature_names if column not in df.columns]
        if missing:
            raise KeyError(f"Missing feature columns: {', '.join(missing)}")
        return df[self.feature_names].astype(float)

    def fit(self, df: pd.DataFrame) -> "ChurnClassifier":
        """Fit on a labelled frame."""
        self.pipeline = Pipeline([
            ("scaler", StandardScaler()),
            ("estimator", self._create_estimator()),
        ])
        self.pipeline.fit(self._features(df), df[LABEL_COLUMN].astype(int))
        logger.info("Model fitted", model_type=self.model_type, n_samples=len(df))
        return self

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """Churn probability per row."""
        if not self.is_fitted:
            raise ValueError("Model must be fitted before predicting")
        return self.pipeline.predict_proba(self._features(df))[:, 1]

    def evaluate(self, df: pd.DataFrame) -> Dict[str, float]:
        y_true = df[LABEL_COLUMN].astype(int)
        probabilities = self.predict_proba(df)
        metrics = {"accuracy": float(accuracy_score(y_true, probabilities >= 0.5))}
        if y_true.nunique() > 1:
            metrics["roc_auc"] = float(roc_auc_score(y_true, probabilities))
        return metrics

    def save_model(self, directory: Union[str, Path]) -> Path:
        """Save the fitted model into ``directory``."""
        if not self.is_fitted:
            raise ValueError("Model must be fitted before saving")
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        joblib.dump(self.pipeline, directory / MODEL_FILE)
        with open(directory / METADATA_FILE, "w") as f:
            json.dump({
                "model_type": self.model_type,
                "model_kwargs": self.model_kwargs,
                "feature_names": self.feature_names,
            }, f, indent=2)

        logger.info("Model saved", path=str(directory))
        return directory

    @classmethod
    def load_model(cls, path: Union[str, Path]) -> "ChurnClassifier":
        """Load a model directory, or a bare ``model.joblib`` file."""
        path = Path(path)
        model_file = path / MODEL_FILE if path.is_dir() else path

        metadata: Dict[str, Any] = {}
        metadata_file = model_file.parent / METADATA_FILE
        if metadata_file.exists():
            with open(metadata_file, "r") as f:
                metadata = json.load(f)

        instance = cls(
            model_type=metadata.get("model_type", "logistic_regression"),
            **metadata.get("model_kwargs", {})
        )
        instance.feature_names = metadata.get("feature_names", list(FEATURE_COLUMNS))
        instance.pipeline = joblib.load(model_file)

        logger.info("Model loaded", path=str(path))
        return instance
