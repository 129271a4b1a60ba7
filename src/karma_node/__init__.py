"""Karma node: proof-of-presence reputation for multiplayer game servers."""

__version__ = "0.1.0"
