"""Python client for the chat streaming API."""
