"""Training package for models served through batch scoring.

Highlights:
- The churn classifier example lives in ``training.churn_classifier``; its
  ``score`` module is the reference scoring function for publishing.

Typical usage:
- from training.churn_classifier.data_generator import ChurnDataGenerator

Notes:
- Avoid side effects at import time; perform slow work behind `if __name__ == "__main__"`.
"""
