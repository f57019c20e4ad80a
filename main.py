"""CLI entrypoint for the layered image editor."""

import sys

from lumina_editor.cli import main


if __name__ == "__main__":
    sys.exit(main())
