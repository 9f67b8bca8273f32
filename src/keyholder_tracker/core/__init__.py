"""Core enums, errors and collaborators shared across the application."""
