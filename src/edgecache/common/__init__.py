"""Configuration, observability and metrics shared by edgecache services."""
