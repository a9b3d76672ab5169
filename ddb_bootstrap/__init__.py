"""Readiness-gated, idempotent table provisioning for DynamoDB-compatible stores."""

__version__ = "0.1.0"
