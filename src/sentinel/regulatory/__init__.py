"""Regulatory-intelligence sub-pipeline: scan, extract, generate, version."""
