"""Integration tests for the batch scoring service.

Publishes the churn scoring function to a temporary artifact directory and
runs jobs through the FastAPI application end to end.
"""
