"""
Run one poll cycle for the demo project and print the result.

    SFTP_HOST=... SFTP_USER=... SFTP_PASSWORD=... python examples/sftp/poll_once.py
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from sftpsource.service.server import SourceService


async def main() -> None:
    svc = SourceService(project_dir=Path(__file__).parent, env="dev")
    poller = svc.initialize()
    poller.add_listener(lambda result: print(json.dumps(result.to_dict(), indent=2)))
    await svc.adapter.connect()
    try:
        await poller.run_cycle()
    finally:
        await svc.stop()


if __name__ == "__main__":
    asyncio.run(main())
