"""Shared helpers: checksums and hashes."""
