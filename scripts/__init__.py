"""Utility scripts for operating batch scoring services.

Scripts include:
- ``publish_service.py``: register a scoring function and write its driver
  descriptor and schema manifest.
- ``run_batch_job.py``: run one job against a published service.
"""
