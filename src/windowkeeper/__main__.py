"""Entry point for `python -m windowkeeper`."""

import sys

from .cli.ctl import main

if __name__ == "__main__":
    sys.exit(main())
