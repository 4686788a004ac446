"""
Exporter Module Entry Point

Allows execution via: python -m apps.exporter

Delegates to scheduler for all execution modes (scheduled and RUN_ONCE).
"""

import asyncio
import sys

from apps.exporter.scheduler import main


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
