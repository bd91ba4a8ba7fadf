"""HTTP API for the routing engine."""
