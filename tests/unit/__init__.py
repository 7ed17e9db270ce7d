"""Unit tests for the sync and extraction apps and shared utilities."""
