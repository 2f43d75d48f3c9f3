"""Per-provider conversation index, on-disk writer and the archive pass."""
