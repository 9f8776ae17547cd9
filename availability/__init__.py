"""Availability and scheduling engine for voice-driven calendar booking."""
