"""Domain services sitting between the HTTP layer and the repositories."""
