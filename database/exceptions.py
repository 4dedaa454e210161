"""Database exception types."""

class DatabaseError(Exception):
    """Raised when a database operation fails."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or migrated."""
    pass

class DatabaseNotInitializedError(DatabaseError):
    """Raised when the connection pool could not be created."""
    pass
