"""Allow ``python -m patchwork``."""

from patchwork.cli import app

if __name__ == "__main__":
    app()
