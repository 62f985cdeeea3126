"""Main entry point for ``python -m lendingdesk``."""

from lendingdesk.cli import main

if __name__ == "__main__":
    main()
