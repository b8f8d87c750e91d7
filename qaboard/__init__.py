"""Real-time Q&A board service."""
