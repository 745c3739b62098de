"""HTTP API for nodectl."""
