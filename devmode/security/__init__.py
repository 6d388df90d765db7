"""Audit logging, requester identity and uploads hardening."""
