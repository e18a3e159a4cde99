"""Audience Masters node: score TV audience predictions and rank players."""
