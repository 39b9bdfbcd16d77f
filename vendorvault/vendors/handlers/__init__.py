"""Bundled vendor handlers, discovered by the handler registry at startup."""
