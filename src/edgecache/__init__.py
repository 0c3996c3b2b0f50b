"""Read-through edge cache for object-storage origins."""
