"""
Module entrypoint: `python -m vr_pdf`.
"""

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
