"""Kernel services - persistence boundary and sequence allocation."""
