"""
Entry point for `depot-packer` and `python -m depot_packer`.
"""

import logging
import sys

import typer
from rich.console import Console

from depot_packer.cli.app import app
from depot_packer.cli.formatters import format_error_with_suggestions
from depot_packer.exceptions import DepotPackerError

log = logging.getLogger("depot_packer")


def main() -> None:
    # QR codes are drawn with block glyphs.
    if sys.platform == "win32":
        for stream in (sys.stdout, sys.stderr):
            if hasattr(stream, "reconfigure"):
                stream.reconfigure(encoding="utf-8")

    console = Console(stderr=True)
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, the queue was not finished.[/yellow]")
        sys.exit(130)
    except DepotPackerError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(1)
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
