"""
Radar sweep — periodically restart the mDNS browser.

Some locks join the network without an unsolicited announcement and would
stay invisible to a long-running browser.  Restarting the browser sends a
fresh query that they answer.
"""

import asyncio
import logging

from app.config import settings
from app.discovery.mdns import MdnsListener

logger = logging.getLogger(__name__)


async def run_radar_sweep(listener: MdnsListener) -> None:
    interval = settings.radar_sweep_interval
    logger.info("Radar sweep starting (interval=%.0fs)", interval)

    while True:
        try:
            await asyncio.sleep(interval)
            await listener.sweep()

        except asyncio.CancelledError:
            logger.info("Radar sweep cancelled — shutting down")
            break

        except Exception as exc:
            logger.error("Radar sweep failed: %s", exc)

    logger.info("Radar sweep stopped")
