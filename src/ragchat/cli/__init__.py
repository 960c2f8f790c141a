"""ragchat command-line interface."""
