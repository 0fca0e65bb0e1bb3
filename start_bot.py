#!/usr/bin/env python3
"""
Now-Playing Chat Bot Startup Script

Command line entry point: sign the bot in with the Twitch device flow, check
the stored token, join a channel's chat, or sign out.
"""

import asyncio
import sys
import argparse
import logging
import signal
from pathlib import Path
from typing import Optional

# Add current directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import ConfigurationManager, ConfigurationError
from controller import IntegrationController, RECONNECT_EXHAUSTED_REASON
from credential_store import KeyringCredentialStore
from models import (
    AuthPhase,
    AuthStateChanged,
    ChatMessageReceived,
    ConnectionState,
    ConnectionStateChanged,
    StatusMessageChanged,
)
from now_playing import FileNowPlayingProvider, NowPlayingProvider, StaticNowPlayingProvider


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))
    else:
        handlers.append(logging.FileHandler('nowplaying_bot.log'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def create_provider(config_manager: ConfigurationManager) -> NowPlayingProvider:
    """Use the now-playing file when one is configured."""
    now_playing_file = config_manager.get_now_playing_config().get('file', '')
    if now_playing_file:
        return FileNowPlayingProvider(now_playing_file)
    return StaticNowPlayingProvider()


def create_controller(config_manager: ConfigurationManager) -> IntegrationController:
    service_name = config_manager.get_credentials_config()['service_name']
    return IntegrationController(
        config_manager=config_manager,
        credential_store=KeyringCredentialStore(service_name),
        now_playing_provider=create_provider(config_manager)
    )


def print_event(event) -> None:
    """Show controller events on the console."""
    if isinstance(event, AuthStateChanged) and event.state.phase == AuthPhase.WAITING_FOR_AUTH:
        print(f"\nOpen {event.state.verification_uri} and enter the code: {event.state.user_code}")
        if event.state.verification_uri_complete:
            print(f"Or open this link directly: {event.state.verification_uri_complete}")
        print()
    elif isinstance(event, StatusMessageChanged) and event.message:
        print(event.message)
    elif isinstance(event, ChatMessageReceived):
        message = event.message
        logging.getLogger(__name__).info(f"<{message.sender_login}> {message.text}")


async def run_auth(controller: IntegrationController, logger) -> int:
    """Sign the bot in with the device flow."""
    task = await controller.start_authorization()
    if task is None:
        return 1

    await task

    if controller.auth_state.phase == AuthPhase.ERROR:
        logger.error(f"Authorization failed: {controller.auth_state.reason}")
        return 1

    logger.info(f"Signed in as {controller.credential.bot_display_name}")
    return 0


async def run_validate(controller: IntegrationController, logger) -> int:
    """Check the stored token."""
    if not controller.credential.is_signed_in:
        print("Not signed in")
        return 1

    if await controller.validate_stored_token():
        print(f"Token is valid ({controller.credential.bot_display_name or 'unknown bot'})")
        return 0

    print("Token is invalid or missing required scopes. Run 'auth' to sign in again.")
    return 1


async def run_bot(controller: IntegrationController, channel: Optional[str], logger) -> int:
    """Join a channel and answer commands until interrupted."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    reconnect_enabled = controller.config_manager.get_reconnect_config().get('enabled', False)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    def stop_on_failure(event):
        if isinstance(event, ConnectionStateChanged) and event.status.state == ConnectionState.ERROR:
            if not reconnect_enabled or controller.reauth_needed or event.status.reason == RECONNECT_EXHAUSTED_REASON:
                shutdown_event.set()

    if not await controller.validate_stored_token():
        logger.error("No valid Twitch token. Run 'auth' first.")
        return 1

    if not await controller.connect_to_channel(channel):
        logger.error(f"Could not join chat: {controller.status_message}")
        return 1

    controller.add_observer(stop_on_failure)
    logger.info("Bot is running. Press Ctrl+C to stop.")

    await shutdown_event.wait()

    if controller.connection_status.state == ConnectionState.ERROR:
        logger.error(f"Chat connection ended: {controller.connection_status.reason}")
        return 1
    return 0


async def run_sign_out(controller: IntegrationController, logger) -> int:
    await controller.sign_out()
    print("Signed out. Stored Twitch credentials were removed.")
    return 0


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Now-Playing Chat Bot - answers !song and !last in Twitch chat',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  auth      Sign the bot account in with the Twitch device flow
  validate  Check that the stored token is valid
  run       Join a channel's chat and answer commands
  sign-out  Remove every stored credential

Examples:
  python start_bot.py auth
  python start_bot.py run --channel mychannel
  python start_bot.py --log-level DEBUG run
        """
    )
    parser.add_argument(
        '--config',
        default='config.yml',
        help='Path to configuration file (default: config.yml)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Set logging level (default: from configuration)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('auth', help='Sign in with the Twitch device flow')
    subparsers.add_parser('validate', help='Validate the stored token')
    run_parser = subparsers.add_parser('run', help="Join a channel's chat")
    run_parser.add_argument(
        '--channel',
        help='Channel to join (default: last joined channel or bot.channel)'
    )
    subparsers.add_parser('sign-out', help='Delete stored credentials')

    args = parser.parse_args()

    try:
        config_manager = ConfigurationManager(args.config)
    except ConfigurationError as e:
        setup_logging(args.log_level or "INFO")
        logger = logging.getLogger(__name__)
        logger.error(f"Configuration error: {e}")
        logger.info("You can copy config.example.yml to config.yml as a starting point")
        sys.exit(1)

    logging_config = config_manager.get_logging_config()
    setup_logging(args.log_level or logging_config.get('level', 'INFO'), logging_config.get('file'))
    logger = logging.getLogger(__name__)

    if config_manager.get_bot_config().get('debug_logging', False):
        logging.getLogger('chat_session').setLevel(logging.DEBUG)

    controller = create_controller(config_manager)
    controller.add_observer(print_event)

    try:
        if args.command == 'auth':
            exit_code = await run_auth(controller, logger)
        elif args.command == 'validate':
            exit_code = await run_validate(controller, logger)
        elif args.command == 'run':
            exit_code = await run_bot(controller, args.channel, logger)
        else:
            exit_code = await run_sign_out(controller, logger)

    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        exit_code = 0
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        exit_code = 1
    finally:
        await controller.shutdown()

    sys.exit(exit_code)


if __name__ == "__main__":
    asyncio.run(main())
