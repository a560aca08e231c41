"""Database access for the read model."""
