"""Allow ``python -m acmerenew``."""

from acmerenew.cli.main import main

main()
