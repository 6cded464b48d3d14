"""
daemux updater - Self-update mechanism for the daemux command-line tool.

This package checks the release manifest for new versions, downloads and
verifies platform artifacts, installs them side by side with running
instances, switches the active binary atomically and prunes old versions
that no live process still uses.
"""

import logging

__version__ = "0.1.0"

logging.getLogger("daemux_updater").addHandler(logging.NullHandler())
