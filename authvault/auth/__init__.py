"""Credential verification, tokens, sessions, revocation and rate limiting."""
