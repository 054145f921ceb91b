"""
Command-line entry point for the Clipify desktop authentication client.

Provides status inspection, browser login, logout and authenticated API
requests for scripting and troubleshooting.
"""

import sys
import json
import asyncio
import argparse
import logging
from typing import Optional

from clipify_client.app import ClipifyAuthApp
from clipify_client.config import ClientConfiguration
from clipify_shared.exceptions import (
    ClipifyError, AuthenticationError, ConfigurationError
)
from clipify_shared.logging_config import setup_logging, LogLevel, LogFormat

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_AUTH_FAILED = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="clipify-auth",
        description="Clipify desktop authentication client",
        epilog="""
Examples:
  %(prog)s --status                 # Show whether you are logged in
  %(prog)s --status --json          # Same, as JSON
  %(prog)s --login                  # Log in through the browser
  %(prog)s --callback 'clipify://auth/callback?token=...'
  %(prog)s --request /api/v1/users/me
  %(prog)s --logout
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--status", action="store_true",
                                 help="Show the current authentication status")
    operation_group.add_argument("--login", action="store_true",
                                 help="Open the browser to log in, then read the callback URL from stdin")
    operation_group.add_argument("--callback", type=str, metavar="URL",
                                 help="Complete a login with a callback URL without opening the browser")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Log out and clear stored credentials")
    operation_group.add_argument("--request", type=str, metavar="PATH",
                                 help="Make an authenticated GET request and print the response")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output status in JSON format")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Write logs to file")

    args = parser.parse_args(argv)

    if args.json and not args.status:
        parser.error("--json can only be used with --status")

    return args


def configure_logging(config: ClientConfiguration, args) -> None:
    level = 'DEBUG' if args.debug else config.get_log_level()
    if args.json:
        level = 'CRITICAL'

    try:
        log_level = LogLevel(level)
    except ValueError:
        log_level = LogLevel.INFO
    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file()
    )


def _print_login_url(url: str) -> bool:
    print(f"Log in at: {url}", file=sys.stderr)
    return True


def _read_callback_url() -> Optional[str]:
    print("Paste the callback URL from the browser and press Enter:", file=sys.stderr)
    line = sys.stdin.readline()
    return line.strip() or None


async def handle_status_command(app: ClipifyAuthApp, as_json: bool) -> int:
    state = app.auth_service.get_auth_state()
    validation = app.token_storage.get_token_validation_status()

    if as_json:
        print(json.dumps({
            'authenticated': state.is_authenticated,
            'user': state.user.to_dict() if state.user else None,
            'token_valid': validation.is_valid,
            'expires_in': validation.expires_in,
            'environment': app.config.get_environment(),
            'error': state.error,
        }, indent=2))
        return EXIT_OK

    if state.is_authenticated:
        who = state.user.email if state.user else "unknown user"
        print(f"Logged in as {who}")
        if validation.expires_in is not None:
            print(f"Access token expires in {validation.expires_in}s")
    else:
        print("Not logged in")
    if state.error:
        print(f"Error: {state.error}", file=sys.stderr)
    return EXIT_OK


async def handle_login_command(app: ClipifyAuthApp, callback_url: Optional[str]) -> int:
    await app.auth_service.login()
    state = app.auth_service.get_auth_state()
    if state.error:
        print(f"Error: {state.error}", file=sys.stderr)
        return EXIT_FAILED

    url = callback_url or _read_callback_url()
    if not url:
        app.auth_service.cancel_login()
        print("No callback URL provided, login cancelled", file=sys.stderr)
        return EXIT_AUTH_FAILED

    if not await app.handle_url(url):
        print(f"Not a {app.deep_links.prefix} URL", file=sys.stderr)
        return EXIT_AUTH_FAILED

    state = app.auth_service.get_auth_state()
    if not state.is_authenticated:
        print(f"Error: {state.error or 'Authentication failed'}", file=sys.stderr)
        return EXIT_AUTH_FAILED

    who = state.user.email if state.user else "unknown user"
    print(f"Logged in as {who}")
    return EXIT_OK


async def handle_logout_command(app: ClipifyAuthApp) -> int:
    await app.auth_service.logout()
    state = app.auth_service.get_auth_state()
    if state.error:
        print(f"Error: {state.error}", file=sys.stderr)
        return EXIT_FAILED
    print("Logged out")
    return EXIT_OK


async def handle_request_command(app: ClipifyAuthApp, path: str) -> int:
    try:
        response = await app.api_client.get(path)
    except AuthenticationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_AUTH_FAILED
    except ClipifyError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    data = response.data
    if isinstance(data, (dict, list)):
        print(json.dumps(data, indent=2))
    elif isinstance(data, bytes):
        sys.stdout.buffer.write(data)
    elif data is not None:
        print(data)
    return EXIT_OK


async def run(args, config: ClientConfiguration) -> int:
    browser_opener = _print_login_url if args.callback else None
    app = ClipifyAuthApp(config, browser_opener=browser_opener)

    try:
        await app.start()
        if args.status:
            return await handle_status_command(app, args.json)
        if args.login or args.callback:
            return await handle_login_command(app, args.callback)
        if args.logout:
            return await handle_logout_command(app)
        return await handle_request_command(app, args.request)
    finally:
        await app.shutdown()


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    configure_logging(config, args)
    logger.debug(f"Using configuration file: {config.get_config_file_path()}")

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ClipifyError as e:
        logger.error(f"Operation failed: {e}")
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
