"""PostgreSQL access, migrations and the generation-text blob store."""
