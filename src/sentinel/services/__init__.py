"""Concrete implementations of the pipeline's external capabilities."""
