"""Poller thread module for the scrape cycle.

Fetches the VTS status document on a fixed interval, decodes it, runs the
reconciliation engine and publishes the result to the gauge registry.
"""

import logging
import time
from typing import Any, Callable

import vts_client
from config import Config
from decoder import DecodeError, decode
from gauges import DECODE_STAGE, FETCH_STAGE, GaugeRegistry
from reconciler import Reconciler

logger = logging.getLogger(__name__)


class Poller:
    """Poller thread driving fetch, decode, reconcile and publish.

    Cycles run strictly one after another. A failed fetch or decode skips
    the cycle without touching the reconciler or the gauges, so the next
    successful cycle measures its interval from the last good one.
    """

    def __init__(
        self,
        config: Config,
        session: Any,
        reconciler: Reconciler,
        gauges: GaugeRegistry,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the poller.

        Args:
            config: Configuration object
            session: requests.Session from vts_client.build_session()
            reconciler: Reconciler holding the previous snapshot
            gauges: GaugeRegistry receiving the rates
            clock: Monotonic time source used for rate intervals
        """
        self._config = config
        self._session = session
        self._reconciler = reconciler
        self._gauges = gauges
        self._clock = clock

    def run(self, shutdown_event: Any) -> None:
        """Run the poll loop until shutdown.

        Args:
            shutdown_event: Threading event to signal shutdown
        """
        interval = self._config.scrape.interval_seconds
        logger.info(
            f"Polling {self._config.vts.url} every {interval:g}s"
        )

        while not shutdown_event.is_set():
            cycle_start = self._clock()
            self.run_cycle()

            # Sleep for remainder of scrape interval
            elapsed = self._clock() - cycle_start
            sleep_time = interval - elapsed
            if sleep_time > 0:
                if shutdown_event.wait(timeout=sleep_time):
                    break

    def run_cycle(self) -> bool:
        """Execute a single scrape cycle.

        Returns:
            True if the snapshot was reconciled and published, False if the
            cycle was skipped
        """
        try:
            payload = vts_client.fetch_status(
                self._session,
                self._config.vts.url,
                self._config.scrape.timeout_seconds,
            )
        except vts_client.FetchError as e:
            logger.warning(f"Skipping cycle: {e}")
            self._gauges.record_failure(FETCH_STAGE)
            return False

        try:
            backends = decode(payload)
        except DecodeError as e:
            logger.warning(f"Skipping cycle, could not decode status payload: {e}")
            self._gauges.record_failure(DECODE_STAGE)
            return False

        result = self._reconciler.reconcile(backends, self._clock())
        self._gauges.apply(result)
        self._gauges.record_success(time.time(), len(self._reconciler.live_keys()))

        logger.debug(
            f"Cycle complete: {len(backends)} backends, "
            f"{len(result.updates)} rates published, {len(result.retirals)} retired"
        )
        return True
