"""
Command-line entry point for the Taxi Manager client.

Provides login/logout, a raw authenticated GET for scripting and diagnostics,
and the backend address switch used when moving between networks.
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from typing import Any, Optional

from taxi_client.api_client import TaxiManagerAPIClient
from taxi_client.auth.token_claims import get_token_expiration, get_token_user_id, is_token_expired
from taxi_client.auth.token_storage import SecureCredentialStore
from taxi_client.config import ClientConfiguration
from taxi_client.error_handling import describe_api_error
from taxi_shared.exceptions import (
    AuthenticationError, ConfigurationError, NetworkError, APIResponseError, TaxiManagerError
)
from taxi_shared.logging_config import LogFormat, LogLevel, setup_logging
from taxi_shared.models import StorageKey

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_AUTH_REQUIRED = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="taxi-manager",
        description="Taxi Manager back-office client",
        epilog="""
Examples:
  %(prog)s --login encargado1          # Log in (password is prompted)
  %(prog)s --whoami                    # Show the stored session
  %(prog)s --get taxis/ --json         # Authenticated GET, raw JSON output
  %(prog)s --set-host 192.168.1.100    # Point the client at another backend
  %(prog)s --logout                    # Forget stored credentials

Exit codes: 0 success, 1 error, 2 authentication required, 130 interrupted
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--login", type=str, metavar="USERNAME",
                                 help="Log in and store the session")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Clear stored credentials")
    operation_group.add_argument("--whoami", action="store_true",
                                 help="Show the stored session")
    operation_group.add_argument("--get", type=str, metavar="PATH",
                                 help="Authenticated GET of an API path")
    operation_group.add_argument("--set-host", type=str, metavar="IP",
                                 help="Change the backend IP address")
    operation_group.add_argument("--show-config", action="store_true",
                                 help="Print the effective configuration")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--api-url", type=str, metavar="URL",
                              help="Override the API base URL")
    config_group.add_argument("--password-stdin", action="store_true",
                              help="Read the login password from stdin")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output JSON")
    output_group.add_argument("--debug", action="store_true",
                              help="Enable debug logging")
    output_group.add_argument("--log-file", type=str, metavar="FILE",
                              help="Also log to this file")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging from arguments and configuration."""
    if args.debug:
        level = LogLevel.DEBUG
    elif args.json:
        level = LogLevel.ERROR
    else:
        try:
            level = LogLevel(config.get_log_level())
        except ValueError:
            level = LogLevel.INFO

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=level,
        log_format=LogFormat.DETAILED if args.debug else log_format,
        log_file=args.log_file or config.get_log_file(),
        enable_audit=not args.json
    )


def emit(args, data: Any, text: Optional[str] = None) -> None:
    if args.json:
        print(json.dumps(data, default=str))
    else:
        print(text if text is not None else json.dumps(data, indent=2, default=str, ensure_ascii=False))


async def run_login(args, client: TaxiManagerAPIClient) -> int:
    if args.password_stdin:
        password = sys.stdin.readline().rstrip('\n')
    else:
        password = getpass.getpass(f"Password for {args.login}: ")

    user = await client.login(args.login, password)
    emit(args, {'id': user.id, 'username': user.username, 'role': user.role.value},
         f"Welcome, {user.username}! Role: {user.role.value}")
    return EXIT_OK


async def run_whoami(args, client: TaxiManagerAPIClient) -> int:
    user = await client.restore_session()
    if user is None:
        emit(args, {'authenticated': False}, "Not logged in")
        return EXIT_AUTH_REQUIRED

    access_token = await client.credential_store.get(StorageKey.ACCESS_TOKEN.value)
    expires_at = get_token_expiration(access_token)
    info = {
        'authenticated': True,
        'user_id': user.id,
        'role': user.role.value,
        'token_user_id': get_token_user_id(access_token),
        'access_token_expires_at': expires_at.isoformat() if expires_at else None,
        'access_token_expired': is_token_expired(access_token),
    }
    text = f"User {user.id} ({user.role.value})"
    if expires_at:
        verb = "expired" if info['access_token_expired'] else "expires"
        text += f", access token {verb} {expires_at.isoformat()}"
    emit(args, info, text)
    return EXIT_OK


async def run_operation(args, config: ClientConfiguration) -> int:
    store = SecureCredentialStore()

    async with TaxiManagerAPIClient(config.get_api_base_url(), config.get_timeout(), store) as client:
        if args.login:
            return await run_login(args, client)

        if args.logout:
            await client.logout()
            emit(args, {'authenticated': False}, "Logged out")
            return EXIT_OK

        if args.whoami:
            return await run_whoami(args, client)

        if args.get:
            response = await client.get(args.get)
            emit(args, response.data)
            return EXIT_OK

    return EXIT_ERROR


def main(argv=None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)
        if args.api_url:
            config.set_override('api.url', args.api_url)

        configure_logging(args, config)

        if args.show_config:
            emit(args, config.to_dict())
            return EXIT_OK

        if args.set_host:
            changed = config.set_api_host(args.set_host)
            emit(args, {'changed': changed, 'api_base_url': config.get_api_base_url()},
                 f"Backend URL: {config.get_api_base_url()}" if changed
                 else f"Host {args.set_host} is already configured")
            return EXIT_OK

        return asyncio.run(run_operation(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except AuthenticationError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_AUTH_REQUIRED
    except ConfigurationError as e:
        print(f"Configuration error: {e.user_message}", file=sys.stderr)
        return EXIT_ERROR
    except (APIResponseError, NetworkError) as e:
        logger.debug(f"Command failed: {e.message}", exc_info=True)
        if isinstance(e, APIResponseError) and e.is_unauthorized:
            print("Error: not logged in", file=sys.stderr)
            return EXIT_AUTH_REQUIRED
        print(f"Error: {describe_api_error(e)}", file=sys.stderr)
        return EXIT_ERROR
    except TaxiManagerError as e:
        logger.debug(f"Command failed: {e.message}", exc_info=True)
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if not args.json:
            logger.exception("Fatal error in main")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
