"""Livefeed command line interface."""
