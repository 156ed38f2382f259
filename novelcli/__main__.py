"""Main entry point when executing novelcli as a package.

This allows running the package using python -m novelcli.
"""

from novelcli.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
