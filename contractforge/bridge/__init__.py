"""Bridges to external collaborators: audit sinks and notification senders."""
