"""Tests for the batch scoring adapter.

Unit tests cover schemas, registration, invocation, storage clients and
published artifacts. Tests under ``integration/`` drive the batch scoring
service through its HTTP API.
"""
