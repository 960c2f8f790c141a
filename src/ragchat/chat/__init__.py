"""ragchat chat layer — conversation state, persistence and the turn pipeline."""
