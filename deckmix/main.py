# deckmix/main.py

import argparse
import concurrent.futures
import time
import logging

from . import config as app_config


def setup_logging(log_level_str='INFO'):
    """Set up logging with specified level"""
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Suppress verbose logging from third-party libraries
    if log_level_str.upper() == 'DEBUG':
        # Keep numba at INFO level to avoid bytecode dumps
        logging.getLogger('numba').setLevel(logging.INFO)
        logging.getLogger('librosa').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.INFO)

    return logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(description="deckmix - four-deck console with an autonomous director")
    parser.add_argument("tracks", nargs="*", help="Audio files to import into the catalog")
    parser.add_argument("--demo", action='store_true', help="Also fetch the online demo track")
    parser.add_argument("--director", action='store_true',
                        help="Enable the autonomous director once the imports have finished")
    parser.add_argument("--device", type=int, default=None, help="sounddevice output device index")
    parser.add_argument("--status-interval", type=float, default=5.0,
                        help="Seconds between status lines (default: 5)")
    parser.add_argument("--log-level",
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO',
                        help='Set logging level (default: INFO)')
    parser.add_argument("--verbose", "-v", action='store_true',
                        help='Enable verbose debug logging (same as --log-level DEBUG)')
    parser.add_argument("--quiet", "-q", action='store_true',
                        help='Only show errors and warnings (same as --log-level WARNING)')
    return parser


def run_deckmix(argv=None):
    args = build_parser().parse_args(argv)

    if args.quiet:
        log_level = 'WARNING'
    elif args.verbose:
        log_level = 'DEBUG'
    else:
        log_level = args.log_level

    logger = setup_logging(log_level)
    logger.info(f"deckmix starting with log level: {log_level}")

    from .console import Console
    from .events import AcquisitionFailed, DeferredStopRaced, TransitionStarted

    def report(event):
        if isinstance(event, TransitionStarted):
            logger.info(f"Transition {event.source_id} -> {event.destination_id}: '{event.title}'")
        elif isinstance(event, AcquisitionFailed):
            logger.error(f"Could not load {event.source}: {event.reason}")
        elif isinstance(event, DeferredStopRaced):
            logger.warning(f"Deck {event.deck_id} reloaded during a crossfade")

    app_config.ensure_dir_exists(app_config.DOWNLOADS_DIR)

    console = None
    try:
        console = Console(app_config_module=app_config)
        console.add_observer(report)
        console.start(output_device=args.device)

        imports = [console.import_file(path) for path in args.tracks]
        if args.demo:
            imports.append(console.import_demo())
        if imports:
            logger.info(f"Importing {len(imports)} track(s)...")
            concurrent.futures.wait(imports)

        if args.director:
            console.submit(console.set_director_enabled, True)

        logger.info("Running. Press Ctrl+C to exit.")
        while True:
            time.sleep(args.status_interval)
            logger.info(console.status_line())

    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received. Shutting down...")
    except Exception as e:
        logger.error(f"An unexpected error occurred: {e}", exc_info=True)
        return 1
    finally:
        if console is not None:
            try:
                console.shutdown()
            except Exception as shutdown_error:
                logger.error(f"Error during shutdown: {shutdown_error}")
        logger.info("deckmix finished.")
    return 0


if __name__ == "__main__":
    raise SystemExit(run_deckmix())
