"""Conversation engine: normalization, deduplication, state machine and dispatch."""
