"""Allow ``python -m vpsdev``."""

from .cli import main

main()
