"""
Main entry point for the Vibe Downloader command line application.

This script initializes the configuration, sets up logging, creates the
controller and the console view, and runs the requested command on the
asyncio event loop.
"""

import argparse
import sys
import logging
import asyncio
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

from vibe_downloader.logging_config import setup_logging
from vibe_downloader.config import ConfigManager
from vibe_downloader.console import ConsoleView
from vibe_downloader.constants import CONFIG_FILE, AUDIO_QUALITY_TIERS, COOKIE_PLATFORMS
from vibe_downloader.controller import AppController
from vibe_downloader.exceptions import (
    BatchValidationError, CookieError, DownloadBusyError, DownloadCancelledError, MediaFetchError,
    MetadataFetchError
)
from vibe_downloader.jobs import JobStatus, MediaMode
from vibe_downloader._version import __version__


def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))

def handle_async_exception(loop, context):
    """Logs unhandled exceptions from asyncio tasks."""
    logger = logging.getLogger()
    msg = context.get("exception", context["message"])
    logger.critical(f"Caught exception from asyncio task: {msg}")


def _item_list(value: str) -> List[int]:
    """Parses a playlist selection such as '1,3,5-8' into 1-based positions."""
    items = []
    try:
        for part in value.split(','):
            start, _, end = part.strip().partition('-')
            items.extend(range(int(start), int(end or start) + 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid item list: '{value}'")
    if not items or min(items) < 1:
        raise argparse.ArgumentTypeError(f"invalid item list: '{value}'")
    return items


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='vibe-downloader', description="Download videos and audio with yt-dlp.")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help="Echo INFO log messages to the console.")
    subparsers = parser.add_subparsers(dest='command', required=True)

    info = subparsers.add_parser('info', help="Show what a URL contains.")
    info.add_argument('url')

    get = subparsers.add_parser('get', help="Download a single URL.")
    get.add_argument('url')
    get_format = get.add_mutually_exclusive_group()
    get_format.add_argument('--audio', nargs='?', const='', choices=[''] + list(AUDIO_QUALITY_TIERS),
                            metavar='TIER', help="Extract MP3 audio at the given quality tier.")
    get_format.add_argument('--format', dest='format_id', metavar='ID', help="A yt-dlp video format id.")
    get.add_argument('--folder', metavar='NAME', help="Sub folder inside the organized output folder.")
    get.add_argument('--items', type=_item_list, metavar='LIST',
                     help="Playlist entries to download, e.g. '1,3,5-8'. Defaults to all entries.")

    batch = subparsers.add_parser('batch', help="Download every URL in a file, one line per URL.")
    batch.add_argument('file', help="Path to a text file, or '-' for stdin.")
    batch.add_argument('--audio', nargs='?', const='', choices=[''] + list(AUDIO_QUALITY_TIERS),
                       metavar='TIER', help="Extract MP3 audio at the given quality tier.")

    cookies = subparsers.add_parser('cookies', help="Manage per-platform cookie files.")
    cookies.add_argument('action', choices=['set', 'status', 'delete'])
    cookies.add_argument('platform', choices=list(COOKIE_PLATFORMS))
    cookies.add_argument('file', nargs='?', help="Netscape cookie file to import (for 'set').")

    history = subparsers.add_parser('history', help="List finished downloads.")
    history_action = history.add_mutually_exclusive_group()
    history_action.add_argument('--clear', action='store_true')
    history_action.add_argument('--delete', metavar='ID')

    deps = subparsers.add_parser('deps', help="Show or install yt-dlp and FFmpeg.")
    deps_action = deps.add_mutually_exclusive_group()
    deps_action.add_argument('--update-ytdlp', action='store_true')
    deps_action.add_argument('--install-ffmpeg', action='store_true')
    deps_action.add_argument('--skip-update', metavar='VERSION',
                             help="Stop announcing the given application release.")
    return parser


def _audio_choice(value: Optional[str]):
    """Maps the --audio flag to (mode, tier); '' means the configured tier."""
    if value is None:
        return None, None
    return MediaMode.AUDIO, value or None


async def _run_info(controller: AppController, view: ConsoleView, args) -> int:
    metadata = await controller.fetch_metadata(args.url)
    view.show_metadata(metadata)
    return 0


async def _run_get(controller: AppController, view: ConsoleView, args) -> int:
    mode, tier = _audio_choice(args.audio)
    if mode is None and args.format_id:
        mode = MediaMode.VIDEO
    metadata = await controller.fetch_metadata(args.url)
    if metadata.is_playlist:
        return await _run_playlist(controller, view, metadata, args, mode, tier)
    job = controller.build_job(args.url, metadata, mode=mode, audio_quality=tier,
                               format_id=args.format_id, folder=args.folder)
    await controller.start_download(job)
    state = await controller.wait_for_download()
    return 0 if state.status == JobStatus.COMPLETED else 1


async def _run_playlist(controller: AppController, view: ConsoleView, metadata, args, mode, tier) -> int:
    entries = await controller.submit_playlist(metadata, items=args.items, mode=mode, audio_quality=tier)
    view.show_message(f"Queued {len(entries)} item(s) from '{metadata.title}'.")
    return await _wait_for_batch(controller)


async def _wait_for_batch(controller: AppController) -> int:
    try:
        await controller.wait_for_batch()
    except asyncio.CancelledError:
        await controller.cancel_batch()
        raise
    return 0 if controller.batch.get_stats()['failed'] == 0 else 1


async def _run_batch(controller: AppController, view: ConsoleView, args) -> int:
    if args.file == '-':
        text = await asyncio.to_thread(sys.stdin.read)
    else:
        text = await asyncio.to_thread(Path(args.file).read_text, encoding='utf-8')
    mode, tier = _audio_choice(args.audio)
    await controller.submit_batch(text, mode=mode, audio_quality=tier)
    return await _wait_for_batch(controller)


async def _run_cookies(controller: AppController, view: ConsoleView, args) -> int:
    if args.action == 'set':
        if not args.file:
            view.show_message("A cookie file is required for 'cookies set'.")
            return 2
        content = await asyncio.to_thread(Path(args.file).read_text, encoding='utf-8')
        path = controller.save_cookies(content, args.platform)
        view.show_message(f"Cookies saved for {args.platform}: {path}")
    elif args.action == 'delete':
        controller.delete_cookies(args.platform)
        view.show_message(f"Cookies deleted for {args.platform}.")
    else:
        status = controller.cookie_status(args.platform)
        view.show_message(f"{args.platform}: {'configured at ' + status['path'] if status['exists'] else 'not configured'}")
    return 0


async def _run_history(controller: AppController, view: ConsoleView, args) -> int:
    if args.clear:
        controller.clear_history()
        view.show_message("History cleared.")
        return 0
    if args.delete:
        if not controller.delete_history_item(args.delete):
            view.show_message(f"No history item with id {args.delete}.")
            return 1
        return 0
    for item in controller.get_history():
        view.show_message(f"{item.id}  {item.completed_at:%Y-%m-%d %H:%M}  [{item.mode}] {item.title}  {item.path or ''}")
    return 0


async def _run_deps(controller: AppController, view: ConsoleView, args) -> int:
    if args.skip_update:
        controller.skip_update_version(args.skip_update.lstrip('v'))
        view.show_message(f"Version {args.skip_update} will no longer be announced.")
        return 0
    if args.update_ytdlp or args.install_ffmpeg:
        result = await controller.initiate_dependency_download('yt-dlp' if args.update_ytdlp else 'ffmpeg')
        if not result.get('success'):
            view.show_message(f"An error occurred: {result.get('error')}")
            return 1
        if result.get('updated') is False:
            view.show_message(f"yt-dlp is already up to date ({result.get('version')}).")
        else:
            view.show_message(f"{result.get('type', 'Dependency').upper()} installed successfully.")
    versions = await controller.get_dependency_versions()
    for name, version in versions.items():
        view.show_message(f"{name}: {version}")
    return 0


COMMANDS = {
    'info': _run_info,
    'get': _run_get,
    'batch': _run_batch,
    'cookies': _run_cookies,
    'history': _run_history,
    'deps': _run_deps,
}


async def run(controller: AppController, view: ConsoleView, args) -> int:
    """Runs one CLI command against the controller and returns the exit status."""
    try:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(handle_async_exception)
    except RuntimeError:
        logging.error("Could not get running loop to set exception handler.")

    controller.set_view(view)
    # Only the commands that can start a download need the update check
    await controller.run_startup_checks(check_for_updates=args.command in ('get', 'batch'))
    try:
        return await COMMANDS[args.command](controller, view, args)
    except (MetadataFetchError, MediaFetchError, BatchValidationError, DownloadBusyError, CookieError) as e:
        view.show_message(f"Error: {e}")
        return 1
    except DownloadCancelledError:
        view.show_message("Cancelled.")
        return 1
    except OSError as e:
        view.show_message(f"Error: {e}")
        return 1
    finally:
        await controller.on_app_closing()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Load configuration before setting up logging
    config_manager = ConfigManager(CONFIG_FILE)
    config = config_manager.load()
    setup_logging(config.log_level, 'INFO' if args.verbose else 'WARNING')
    sys.excepthook = handle_exception

    controller = AppController(config_manager, config)
    view = ConsoleView()
    try:
        return asyncio.run(run(controller, view, args))
    except KeyboardInterrupt:
        logging.info("Application interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
