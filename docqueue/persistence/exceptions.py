class StoreError(Exception):
    """Raised when a key/value backend cannot read or write a record."""
