"""HTTP API for the Karma node."""
