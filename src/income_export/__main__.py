"""Allow ``python -m income_export``."""

from income_export.main import cli

if __name__ == "__main__":
    cli()
