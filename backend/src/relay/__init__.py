"""Relay realtime messaging core."""
