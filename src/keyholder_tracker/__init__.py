"""Keyholder Tracker - relationship, session and task lifecycle service."""

__version__ = "1.0.0"
