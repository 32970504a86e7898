"""Utility functions for the repair kernel."""
