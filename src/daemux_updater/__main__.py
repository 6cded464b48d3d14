"""Allow ``python -m daemux_updater``."""

import sys

from daemux_updater.cli import main

if __name__ == "__main__":
    sys.exit(main())
