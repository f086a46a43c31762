"""Core components: token estimation, activation and context building."""
