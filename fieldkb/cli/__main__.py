"""Allow ``python -m fieldkb.cli`` execution."""

from fieldkb.cli.kb import main

main()
