"""Snapshots and the chain event log."""
