"""Connection quality monitoring.

Samples the peer connection's transport statistics on a fixed interval and
classifies inbound video packet loss into coarse buckets:

    loss > 10%  -> "poor"
    loss > 5%   -> "fair"
    otherwise   -> "good"
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from .config import connection_config

logger = logging.getLogger(__name__)

QUALITY_GOOD = "good"
QUALITY_FAIR = "fair"
QUALITY_POOR = "poor"

_RANK = {QUALITY_GOOD: 0, QUALITY_FAIR: 1, QUALITY_POOR: 2}


def _stat(report: Any, name: str):
    if isinstance(report, dict):
        return report.get(name)
    return getattr(report, name, None)


def loss_rate(packets_lost: Optional[int], packets_received: Optional[int]) -> float:
    """Packet loss ratio; a missing or zero received count counts as 1."""
    lost = packets_lost or 0
    received = packets_received or 1
    return lost / (lost + received)


def classify_quality(reports: Iterable[Any]) -> str:
    """Classify a stats snapshot.

    Args:
        reports: stats report values (aiortc ``RTCStatsReport.values()`` or
            plain dicts with ``type``, ``kind``, ``packetsLost``,
            ``packetsReceived``)

    Returns:
        str: "good", "fair" or "poor"; the worst inbound video stream wins
    """
    quality = QUALITY_GOOD
    for report in reports:
        if _stat(report, "type") != "inbound-rtp" or _stat(report, "kind") != "video":
            continue

        rate = loss_rate(_stat(report, "packetsLost"), _stat(report, "packetsReceived"))
        if rate > connection_config.POOR_LOSS_THRESHOLD:
            current = QUALITY_POOR
        elif rate > connection_config.FAIR_LOSS_THRESHOLD:
            current = QUALITY_FAIR
        else:
            current = QUALITY_GOOD

        if _RANK[current] > _RANK[quality]:
            quality = current
    return quality


class QualityMonitor:
    """Periodic stats sampler.

    Attributes:
        quality (str): last classified bucket
        interval (float): seconds between samples

    Examples:
        >>> monitor = QualityMonitor(manager.get_stats, on_change)
        >>> monitor.start()
        >>> ...
        >>> await monitor.stop()
    """

    def __init__(
        self,
        sample: Callable[[], Awaitable[Any]],
        on_change: Optional[Callable[[str], Awaitable[None]]] = None,
        interval: float = connection_config.QUALITY_SAMPLE_INTERVAL,
    ):
        self.sample = sample
        self.on_change = on_change
        self.interval = interval
        self.quality = QUALITY_GOOD
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"[Quality] monitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[Quality] monitor stopped")

    async def sample_once(self) -> str:
        """Take one sample and notify on a bucket change."""
        stats = await self.sample()
        values = stats.values() if hasattr(stats, "values") else stats
        quality = classify_quality(values)
        if quality != self.quality:
            logger.info(f"[Quality] {self.quality} -> {quality}")
            self.quality = quality
            if self.on_change:
                await self.on_change(quality)
        return quality

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sample_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[Quality] stats sampling failed: {e}")
