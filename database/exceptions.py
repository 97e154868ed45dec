"""Database exception types."""

class DatabaseError(Exception):
    """Base class for database errors."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema loading, validation or migration fails."""
    pass

class InvalidIdentifierError(DatabaseError):
    """Raised when a table or column name is not allowed in a generated query."""
    pass

class BucketError(DatabaseError):
    """Raised when a storage bucket operation fails."""
    pass

class FunctionNotFoundError(DatabaseError):
    """Raised when invoking a function that has not been registered."""
    pass
