"""DUSD lock reward bot."""
