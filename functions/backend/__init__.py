"""
Backend package for the community slots API.

This package provides a FastAPI application with document store, identity
provider and blob storage abstractions, each with an in-memory implementation
for local runs and tests and Firebase/SQL/S3 implementations for deployment.
"""
