"""Embedding generation for code and documentation chunks."""
