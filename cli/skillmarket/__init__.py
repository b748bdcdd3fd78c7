"""skillmarket CLI.

Entry point: ``cli.skillmarket.cli:main``.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
