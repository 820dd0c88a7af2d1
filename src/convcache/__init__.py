"""Topic-isolated conversation cache: durable markdown memory for agents."""
