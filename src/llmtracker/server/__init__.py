"""Ingestion server: accepts bridge connections and applies envelopes to the store."""
