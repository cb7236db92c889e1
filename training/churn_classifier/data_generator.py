"""Synthetic customer activity data for the churn classifier.

Rows describe one customer each: an ``customer_id``, numeric activity
features, and (for training data) a ``churned`` label drawn from a logistic
model of those features so a classifier has real signal to learn.
"""

import numpy as np
import pandas as pd
import structlog

logger = structlog.get_logger("data_generator")

FEATURE_COLUMNS = ["tenure_months", "monthly_spend", "support_calls", "days_since_login"]
LABEL_COLUMN = "churned"
ID_COLUMN = "customer_id"


class ChurnDataGenerator:
    """Generate synthetic customer tables."""

    def __init__(self, seed: int = 42):
        """Initialize RNG with a fixed seed for reproducibility."""
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def generate(self, n_samples: int = 1000, with_labels: bool = True) -> pd.DataFrame:
        """Generate ``n_samples`` customers."""
        tenure = self.rng.integers(1, 72, size=n_samples)
        spend = np.round(self.rng.gamma(shape=4.0, scale=15.0, size=n_samples), 2)
        calls = self.rng.poisson(lam=1.5, size=n_samples)
        idle = self.rng.integers(0, 90, size=n_samples)

        df = pd.DataFrame({
            ID_COLUMN: [f"C{i:06d}" for i in range(n_samples)],
            "tenure_months": tenure,
            "monthly_spend": spend,
            "support_calls": calls,
            "days_since_login": idle,
        })

        if with_labels:
            # Short tenure, many support calls and long idle periods raise churn risk.
            logit = -1.0 - 0.05 * tenure + 0.6 * calls + 0.04 * idle - 0.005 * spend
            probability = 1.0 / (1.0 + np.exp(-logit))
            df[LABEL_COLUMN] = (self.rng.random(n_samples) < probability).astype(int)

        logger.info(
            "Generated customer data",
            n_samples=n_samples,
            with_labels=with_labels,
            churn_rate=float(df[LABEL_COLUMN].mean()) if with_labels else None,
        )
        return df
