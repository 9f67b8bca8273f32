"""Change subscriptions and WebSocket delivery."""
