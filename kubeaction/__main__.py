"""Entry point for `python -m kubeaction`.

Usage:
    python -m kubeaction
    uv run python -m kubeaction
"""

from __future__ import annotations

import asyncio

from kubeaction.app import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
