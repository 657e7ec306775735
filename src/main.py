"""
CS2 Portfolio - entry point.

    python src/main.py                 # serve on PORT (default 3000)
    python src/main.py --port 8080 --debug
"""

import argparse
import logging
import os
import sys

from config import HOST, LOG_FILE, LOG_LEVEL, PORT

logger = logging.getLogger("cs2-portfolio")


def setup_logging(debug: bool = False):
    """Configure logging.

    Console shows INFO+; the log file gets DEBUG when --debug is used
    (cache hits, per-item prices).
    """
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if debug else getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))

    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.addHandler(console)
    root_logger.addHandler(file_handler)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def main():
    parser = argparse.ArgumentParser(
        description="CS2 Portfolio - live valuation of a CS2 item collection",
    )
    parser.add_argument("--host", default=HOST, help=f"Bind address (default: {HOST})")
    parser.add_argument("--port", "-p", type=int, default=PORT,
                        help=f"Listen port (default: {PORT})")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(debug=args.debug)

    import uvicorn

    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

    logger.info(f"CS2 Portfolio server listening on port {args.port}")
    try:
        uvicorn.run(
            "server:app",
            host=args.host,
            port=args.port,
            log_level="debug" if args.debug else "info",
        )
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
