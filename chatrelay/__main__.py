"""Allow ``python -m chatrelay``."""

from chatrelay.cli import app

app()
