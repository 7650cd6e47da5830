import sys
import signal
import asyncio
import logging
import argparse


def setup_logging(verbose=False):
    from core.logging_utils import LOG_FORMAT, get_log_level

    level = logging.DEBUG if verbose else logging.INFO
    try:
        from core.config import get_config
        config = get_config()
        if not verbose:
            level = get_log_level(config.get("logging", "level"))
    except Exception:
        config = None

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True  # loading the config may already have logged
    )

    # Check if file logging should be enabled
    try:
        from core.logging_utils import setup_file_logging

        if config is not None and config.get("logging", "file_logging_enabled"):
            setup_file_logging()
    except Exception as e:
        logging.error(f"Failed to setup file logging from config: {e}")


def print_status(aggregator):
    print(f"[{aggregator.status.value}] {aggregator.explanation}", flush=True)


async def serve(aggregator, stop, toggles):
    """Toggle our own inhibitor for every item put on `toggles` until `stop` is set.

    Toggles run as tasks so a hung Inhibit/Uninhibit call never delays a stop.
    """
    pending = set()
    stopper = asyncio.ensure_future(stop.wait())
    try:
        while not stop.is_set():
            getter = asyncio.ensure_future(toggles.get())
            done, _ = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                logging.info("Toggle requested")
                task = asyncio.ensure_future(aggregator.toggle())
                pending.add(task)
                task.add_done_callback(pending.discard)
            else:
                getter.cancel()
    finally:
        stopper.cancel()
        for task in list(pending):
            task.cancel()


async def wait_for_signals(aggregator):
    """Run until SIGINT/SIGTERM, toggling our own inhibitor on every SIGUSR1."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    toggles = asyncio.Queue()

    loop.add_signal_handler(signal.SIGINT, stop.set)
    loop.add_signal_handler(signal.SIGTERM, stop.set)
    loop.add_signal_handler(signal.SIGUSR1, toggles.put_nowait, None)
    try:
        await serve(aggregator, stop, toggles)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGUSR1):
            loop.remove_signal_handler(sig)


async def run(args):
    from core.config import get_config
    from core.factory import get_session_manager
    from logic.aggregator import InhibitorAggregator

    config = get_config()
    try:
        session = get_session_manager(bus=config.get("session", "bus") or "SESSION")
        await session.connect()
    except Exception as e:
        logging.error(f"Could not reach the session manager: {e}")
        return 1

    if args.check:
        try:
            handles = await session.list_inhibitor_handles()
            logging.info(f"Session manager reachable, {len(handles)} inhibitor(s) registered")
            logging.info("Environment check passed.")
            return 0
        except Exception as e:
            logging.error(f"Environment check failed: {e}")
            return 1
        finally:
            await session.close()

    aggregator = InhibitorAggregator(
        session,
        app_id=config.get("session", "app_id"),
        inhibit_flags=config.get("session", "inhibit_flags"),
        description=config.get("session", "inhibit_reason"),
    )
    try:
        if args.status:
            await aggregator.start()
            await aggregator.wait_idle()
            print_status(aggregator)
            return 0

        aggregator.on_status_changed(print_status)
        await aggregator.start()
        if args.inhibit or config.get("startup", "inhibit_on_start"):
            await aggregator.inhibit()

        logging.info("Monitoring power management inhibitors (SIGUSR1 toggles, Ctrl+C exits)")
        await wait_for_signals(aggregator)
        return 0
    finally:
        await aggregator.shutdown()
        await session.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Power management inhibitor indicator")
    parser.add_argument("--check", action="store_true", help="Check the session manager is reachable and exit")
    parser.add_argument("--status", action="store_true", help="Print the current status once and exit")
    parser.add_argument("--inhibit", action="store_true", help="Inhibit power management while running")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if sys.platform.startswith('linux'):
        try:
            from platforms.linux.session import ensure_session_bus_environment
            ensure_session_bus_environment()
        except Exception as e:
            logging.warning(f"Session setup failed: {e}")

    return asyncio.run(run(args))

if __name__ == "__main__":
    sys.exit(main())
