"""Core primitives: errors, library logging, settings and log retention."""
