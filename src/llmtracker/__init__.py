"""LLM Tracker - capture ingestion pipeline for hosted LLM chat services."""

__version__ = "0.1.0"
