"""
Entry point for running btcwatch as a module.

Usage:
    python -m btcwatch
"""

from btcwatch.cli import main

if __name__ == "__main__":
    main()
