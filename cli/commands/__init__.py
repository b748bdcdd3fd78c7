"""CLI command groups for skillmarket.

Each module defines one typer sub-app; ``cli.skillmarket.cli`` registers them.
"""
