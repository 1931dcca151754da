"""Per-session state: edit history, suggestions and the orchestrating session."""
