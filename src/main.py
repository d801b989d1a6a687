"""Main entry point module.

Handles configuration, the metrics HTTP server, the poller thread
lifecycle, signal handling, and clean shutdown.
"""

import logging
import signal
import sys
import threading
from typing import Any

from prometheus_client import start_http_server

import config as config_module
import gauges
import poller
import reconciler
import vts_client


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def run_with_restart(
    target_func: Any,
    shutdown_event: threading.Event,
    thread_name: str,
    *args: Any,
    restart_delay: float = 30,
) -> None:
    """Run a function with automatic restart on exception.

    Catches any unhandled exception, logs it, waits restart_delay seconds
    (checking shutdown_event during wait), then restarts the function.

    Args:
        target_func: The function to run
        shutdown_event: Event to signal shutdown
        thread_name: Name of the thread for logging
        *args: Arguments to pass to the function
        restart_delay: Seconds to wait before restarting
    """
    while not shutdown_event.is_set():
        try:
            target_func(*args)
        except Exception:
            logger.exception(
                f"Unhandled exception in {thread_name}, waiting to restart..."
            )

            if shutdown_event.wait(timeout=restart_delay):
                break

            logger.info(f"Restarting {thread_name}...")


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown, 1 on startup failure)
    """
    try:
        cfg = config_module.load_config()
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(cfg.logging.level)
    logger.info(
        f"Configuration loaded: url={cfg.vts.url} "
        f"interval={cfg.scrape.interval_seconds:g}s timeout={cfg.scrape.timeout_seconds:g}s"
    )

    registry = gauges.GaugeRegistry()

    try:
        start_http_server(cfg.metrics.port, addr=cfg.metrics.addr, registry=registry.registry)
    except OSError as e:
        logger.error(
            f"Failed to start metrics server on {cfg.metrics.addr}:{cfg.metrics.port}: {e}"
        )
        return 1
    logger.info(f"Serving metrics on {cfg.metrics.addr}:{cfg.metrics.port}/metrics")

    engine = reconciler.Reconciler()
    poller_instance = poller.Poller(cfg, vts_client.build_session(), engine, registry)

    shutdown_event = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    poller_thread = threading.Thread(
        target=run_with_restart,
        args=(poller_instance.run, shutdown_event, "poller", shutdown_event),
        name="poller",
        daemon=True,
    )
    poller_thread.start()
    logger.info(f"Started {poller_thread.name} thread")

    try:
        while not shutdown_event.wait(timeout=30):
            logger.debug(f"Heartbeat: last successful cycle at {engine.last_cycle_at}")
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        shutdown_event.set()

    logger.info("Shutting down...")

    poller_thread.join(timeout=10)
    if poller_thread.is_alive():
        logger.warning(f"Thread {poller_thread.name} did not stop within timeout")

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
