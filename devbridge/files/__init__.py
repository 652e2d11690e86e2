"""File browsing, reading and search wrappers."""
