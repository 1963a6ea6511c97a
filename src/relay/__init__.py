"""Webhook relay from a source-control host to a message transport.

This package provides:
- GitHub webhook intake and envelope publishing (webhook)
- A pluggable publish/subscribe transport with a NATS backend (messages)
- Per-repository credential lookup from Kubernetes secrets (credentials)
- Repository file download with resolved credentials (github)
- Canonicalization of names into Kubernetes identifiers (identifiers)
"""
