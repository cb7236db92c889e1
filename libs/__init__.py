"""Shared libraries for the batch scoring platform.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and telemetry events.
- ``libs.scoring``: the scoring adapter, schemas, descriptors and storage.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
