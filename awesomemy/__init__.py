"""awesome-my backend: public catalogue + per-user management API."""
