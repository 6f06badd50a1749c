"""Entry point for ``python -m src.cli``."""

from src.cli import app

if __name__ == "__main__":
    app()
