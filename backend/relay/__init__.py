"""Encrypted chat relay backend."""
