"""Allow ``python -m leaddesk``."""

from leaddesk.cli.main import main

main()
