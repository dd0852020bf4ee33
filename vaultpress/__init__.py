"""Vaultpress: build markdown repositories into deployable content bundles."""

__version__ = "0.1.0"
