"""Domain services for the Karma node."""
