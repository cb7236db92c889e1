"""Churn classifier used as the reference batch scoring workload.

Contains:
- ``data_generator.py``: synthetic customer activity tables.
- ``model.py``: ``ChurnClassifier`` (scikit-learn pipeline + persistence).
- ``train.py``: command-line training that writes a model artifact.
- ``score.py``: the batch scoring function and its declared schema.

Guidance:
- Keep generation deterministic by passing explicit seeds.
"""
