"""Test suite for the batch-loader package.

This package contains unit and integration tests validating batching,
caching, recursive resolution, traversal, and concurrency semantics of
deferred loaders.
"""
