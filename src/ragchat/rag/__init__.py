"""Retrieval-augmented generation: retrieval, context assembly, streaming, health."""
