"""Shared utilities for BioBlueprint."""
