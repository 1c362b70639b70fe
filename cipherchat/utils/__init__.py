"""Support code for the chat backend."""
