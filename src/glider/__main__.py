"""CLI entry point for glider."""

import sys


def main() -> int:
    """Main entry point for the glider CLI."""
    from glider.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
