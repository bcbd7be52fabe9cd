"""Tiered image proxy: edge cache, durable object store, remote origin."""
