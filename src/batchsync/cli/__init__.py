"""Command-line interface (``batchsync``)."""
