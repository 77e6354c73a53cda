"""Allow ``python -m tokenlink``."""

from tokenlink.app import main

main()
