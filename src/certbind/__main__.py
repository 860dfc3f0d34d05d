"""Allow ``python -m certbind``."""

from certbind.cli.main import main

main()
