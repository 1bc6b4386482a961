"""Module entrypoint for `python -m dmcertsync`.

Defers to the Typer app so behaviour matches the `dmcertsync` console script.
"""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    main()
