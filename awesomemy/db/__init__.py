"""Postgres persistence: users, projects/events, sessions and schema migrations.

Postgres drivers are imported lazily inside functions so the pure auth/pagination
logic (and most unit tests) can run without psycopg installed.
"""

from __future__ import annotations
