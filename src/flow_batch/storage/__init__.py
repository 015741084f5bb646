"""SQLite persistence: engine policy, migrations and ORM tables."""
