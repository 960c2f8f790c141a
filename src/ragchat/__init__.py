"""ragchat — chat with a local LLM grounded in your own documents and images."""
