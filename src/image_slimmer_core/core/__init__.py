"""Acquisition pipeline internals: config, retries, errors, metrics, client."""
