"""Batch scoring function for the churn classifier.

``score`` is what gets published: it reads a customer table, applies the
model artifact, and writes one row per customer with the churn probability
and the thresholded prediction. The schema constants below are the
declaration it is registered with (``schema.json`` holds the same content
for ``scripts/publish_service.py``).
"""

import pandas as pd
import structlog

from libs.scoring.schema import SchemaEntry
from .data_generator import FEATURE_COLUMNS, ID_COLUMN
from .model import ChurnClassifier

logger = structlog.get_logger("churn_classifier.score")

INPUT_SCHEMA = (
    SchemaEntry.dataset("data", has_header=True, description="Customer activity CSV"),
    SchemaEntry.model("model", description="Directory written by ChurnClassifier.save_model"),
)
OUTPUT_SCHEMA = (
    SchemaEntry.file("result", description="CSV of churn probabilities and predictions"),
)
PARAMETERS = (
    SchemaEntry.primitive("threshold", sample=0.5, description="Probability cut-off for churn"),
)


def read_customers(path: str, has_header: bool) -> pd.DataFrame:
    """Read a customer table; headerless files use the generator's column order."""
    if has_header:
        return pd.read_csv(path)
    return pd.read_csv(path, header=None, names=[ID_COLUMN, *FEATURE_COLUMNS])


def score(data: str, model: str, result: str, threshold: float) -> None:
    """Score every customer in ``data`` and write the predictions to ``result``."""
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")

    frame = read_customers(data, INPUT_SCHEMA[0].has_header)
    classifier = ChurnClassifier.load_model(model)
    probabilities = classifier.predict_proba(frame)

    output = pd.DataFrame({
        "churn_probability": probabilities.round(6),
        "churn_predicted": (probabilities >= threshold).astype(int),
    })
    if ID_COLUMN in frame.columns:
        output.insert(0, ID_COLUMN, frame[ID_COLUMN].values)

    output.to_csv(result, index=False)
    logger.info("Scored customers", rows=len(output), threshold=threshold)
