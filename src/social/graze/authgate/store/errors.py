class StoreError(Exception):
    """The backing store for sessions or login attempts could not be used."""
