"""Per-ecosystem rule catalogs."""
