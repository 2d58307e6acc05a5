"""Core configuration, database and error primitives."""
