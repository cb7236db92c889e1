"""Training script for the churn classifier."""

import argparse
import os
from pathlib import Path
from typing import Optional

import pandas as pd
from sklearn.model_selection import train_test_split
import structlog

from libs.common.config import BaseConfig
from libs.common.logging import configure_logging
from training.churn_classifier.data_generator import ChurnDataGenerator
from training.churn_classifier.model import ChurnClassifier

logger = structlog.get_logger("train")


def prepare_data(data_path: Optional[str] = None, n_samples: int = 2000, seed: int = 42) -> pd.DataFrame:
    """Load labelled data from CSV, or generate it."""
    if data_path and os.path.exists(data_path):
        logger.info("Loading data from file", path=data_path)
        return pd.read_csv(data_path)

    logger.info("Generating synthetic data", n_samples=n_samples)
    return ChurnDataGenerator(seed=seed).generate(n_samples=n_samples)


def train_model(
    df: pd.DataFrame,
    model_type: str = "logistic_regression",
    test_size: float = 0.2,
    seed: int = 42,
    **model_kwargs,
) -> ChurnClassifier:
    """Fit a classifier and log hold-out metrics."""
    train_df, test_df = train_test_split(df, test_size=test_size, random_state=seed)

    model = ChurnClassifier(model_type=model_type, **model_kwargs).fit(train_df)
    metrics = model.evaluate(test_df)

    logger.info("Model evaluated", model_type=model_type, **metrics)
    return model


def main():
    """Main training function."""
    parser = argparse.ArgumentParser(description="Train the churn classifier")
    parser.add_argument("--data-path", help="Labelled CSV (synthetic data when omitted)")
    parser.add_argument("--model-type", default="logistic_regression",
                        choices=["logistic_regression", "random_forest"])
    parser.add_argument("--n-samples", type=int, default=2000)
    parser.add_argument("--output-dir", required=True, help="Directory to write the model artifact")

    args = parser.parse_args()

    config = BaseConfig()
    configure_logging("train", config.ml_log_level, config.ml_log_format)

    df = prepare_data(args.data_path, n_samples=args.n_samples)
    model = train_model(df, model_type=args.model_type)
    model.save_model(Path(args.output_dir))

    logger.info("Training completed successfully", output_dir=args.output_dir)


if __name__ == "__main__":
    main()
