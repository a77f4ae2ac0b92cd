"""CLI entry point for running ttlping as a module."""

import sys

from .main import run


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
