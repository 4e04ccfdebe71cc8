"""Command-line interface for fluxenv."""
