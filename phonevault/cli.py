"""phonevault command line

    phonevault serve [--host HOST] [--port PORT]
    phonevault check-config

Both commands connect to the database and every configured KMS key first and
exit with status 1 if anything is missing or unreachable; serve only binds its
port after that succeeds.
"""

import argparse
import sys
from typing import List, Optional

import structlog
import uvicorn

from phonevault.config import load_settings
from phonevault.errors import PhoneVaultError
from phonevault.main import build_service, create_app
from phonevault.utils.log_config import configure_logging

logger = structlog.get_logger()


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phonevault", description="Encrypted phone number service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: PORT or 8080)")

    sub.add_parser("check-config", help="Validate configuration, database and KMS keys, then exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)

    try:
        settings = load_settings()
        configure_logging(settings.log_level, settings.log_format)
        service = build_service(settings)
    except PhoneVaultError as e:
        configure_logging()
        logger.error("Startup failed", error=e.message, details=e.details)
        return 1

    if args.command == "check-config":
        service.store.dispose()
        logger.info("Configuration OK", purposes=[p.value for p in service.registry.purposes])
        return 0

    app = create_app(service=service, settings=settings)
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Starting PhoneVault server", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
