"""
Entry point for Alertboard.

This module provides the main entry point that delegates to the package's CLI.
"""

from alertboard.main import cli

if __name__ == "__main__":
    cli()
