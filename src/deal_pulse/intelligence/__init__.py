"""AI enrichment capabilities over a chat-completion backend."""
