"""Domain entities, pure rules and history search."""
