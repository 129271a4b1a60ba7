"""Operator scripts for the Karma node."""
