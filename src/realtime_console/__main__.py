"""Allow ``python -m realtime_console``."""

from realtime_console.cli import main

main()
