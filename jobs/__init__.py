"""CLI entrypoints: capture (scan one chain) and match (correlate + export)."""
