"""Allow ``python -m todori``."""

from todori.cli import main

main()
