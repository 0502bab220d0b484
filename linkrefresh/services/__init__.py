"""Refresh services: selection, enrichment, reconciliation and storage."""
