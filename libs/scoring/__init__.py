"""Batch scoring adapter.

Primary components:
- ``schema``: ``SchemaEntry`` / ``ParameterSchema`` declarations.
- ``adapter``: ``ScoringAdapter`` with ``register`` and ``invoke``.
- ``descriptors``: driver descriptor, schema manifest and artifact files.
- ``driver``: loading published services and the generated driver entry.
- ``storage`` / ``minio_storage`` / ``factory``: data reference resolution.
- ``errors``: the error taxonomy.

Guidance:
- Build adapters via ``ScoringAdapter.from_config`` in services and scripts
  so storage and telemetry follow the environment.
"""
