"""Nexus mastery engine."""
