"""Arranque de la CLI `ocpi-emsp` desde un checkout, sin `pip install -e .`.

Uso:
    python main.py versions
    python main.py stop-session --session-id S1

Añade `src/` al path y delega en `cli.main.app`.
"""

from __future__ import annotations

import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parent / "src"


def main(argv: list[str] | None = None) -> None:
    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))

    # Terminales Windows con cp1252 rompen los paneles de rich.
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")

    from cli.main import app  # noqa: PLC0415

    app(args=argv, prog_name="ocpi-emsp")


if __name__ == "__main__":
    main()
