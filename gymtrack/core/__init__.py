"""Store, collector and query layer."""
