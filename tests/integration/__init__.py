"""Integration tests for the vote integrity service.

This package contains integration tests that run against real stores:

- Vote casting, rollback and the per-voter compare-and-set
- Merkle aggregation, sealing and proofs
- HTTP API endpoints via TestClient
- PostgreSQL store checks (only when POSTGRES_TEST_DSN is set)
"""
