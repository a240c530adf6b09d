"""Allow ``python -m stackops``."""

from stackops.cli.app import cli_main

if __name__ == "__main__":
    cli_main()
