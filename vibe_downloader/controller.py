"""
Defines the main AppController class, which orchestrates the application's logic.
"""
import asyncio
import logging
from pydantic import ValidationError
from typing import Dict, Any, Iterable, List, Optional, Tuple, Union
from pathlib import Path

from .dependencies import DependencyManager
from .downloads import MediaFetcher
from .app_updater import AppUpdater
from .batch import BatchQueueEngine
from .config import ConfigManager, Settings
from .constants import HISTORY_FILE
from .cookies import CookieStore
from .exceptions import DownloadBusyError, DownloadCancelledError, MediaFetchError
from .history import HistoryItem, HistoryStore
from .jobs import DownloadState, JobDescriptor, JobStatus, MediaMode, QueueEntry, new_job_id
from .platforms import detect_platform
from .router import ProgressRouter
from .single import SingleDownloadController
from .url_extractor import MediaMetadata, MetadataExtractor


class AppController:
    """
    The central controller for the application's business logic.

    Owns the progress router and both of its consumers, and refuses to let the
    interactive path and the batch path run an external process at the same time.
    """

    def __init__(self, config_manager: ConfigManager, config: Settings,
                 cookie_store: Optional[CookieStore] = None,
                 history: Optional[HistoryStore] = None,
                 dep_manager: Optional[DependencyManager] = None):
        """
        Initializes the AppController.

        Args:
            config_manager: The manager for handling configuration persistence.
            config: The loaded application settings.
            cookie_store: Per-platform cookie files; the default location is used if omitted.
            history: The download history; the default location is used if omitted.
            dep_manager: Locates yt-dlp and FFmpeg; created if omitted.
        """
        self.config_manager = config_manager
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.view = None  # Will be set by the console application

        self.cookie_store = cookie_store or CookieStore()
        self.history = history or HistoryStore(HISTORY_FILE)

        # Backend Managers
        self.dep_manager = dep_manager or DependencyManager(self._on_manager_event)
        self.dep_manager.event_callback = self._on_manager_event
        self.router = ProgressRouter()
        self.extractor = MetadataExtractor(
            None, self.cookie_store,
            timeout=config.metadata_timeout, playlist_item_limit=config.playlist_item_limit,
        )
        self.fetcher = MediaFetcher(self.cookie_store, config.download_base_path, config.concurrent_fragments)
        self.single = SingleDownloadController(self.fetcher, self.router, self._on_manager_event)
        self.batch = BatchQueueEngine(
            self.extractor, self.fetcher, self.router, self._on_manager_event,
            cooldown=config.cooldown_seconds,
            item_timeout=config.item_timeout,
            metadata_timeout=config.metadata_timeout,
        )
        self.app_updater = AppUpdater(self._on_manager_event, self.config)

    def set_view(self, view):
        """Sets the view instance that receives state snapshots."""
        self.view = view

    async def run_startup_checks(self, check_for_updates: bool = True):
        """Runs initial async checks after the event loop has started."""
        await self.dep_manager.initialize()
        self._apply_dependency_paths()

        if check_for_updates and self.config.check_for_updates_on_startup:
            task = asyncio.create_task(self.check_for_updates(), name="app-update-check")
            task.add_done_callback(self._handle_task_exception)

    def _apply_dependency_paths(self):
        ffmpeg_path = self.config.ffmpeg_location or self.dep_manager.ffmpeg_path
        self.fetcher.set_config(self.dep_manager.yt_dlp_path, ffmpeg_path)
        self.extractor.yt_dlp_path = self.dep_manager.yt_dlp_path

    def _require_yt_dlp(self):
        if not self.dep_manager.yt_dlp_path:
            raise MediaFetchError("Cannot start: yt-dlp is not available. Run 'deps --update-ytdlp' first.")

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log exceptions from fire-and-forget tasks."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Expected
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")

    # --- Manager events ---

    async def _on_manager_event(self, event: Tuple[str, Any]):
        """
        Handles events from backend managers, records history, and calls view methods.
        This method is async and called directly by the managers.
        """
        msg_type, value = event
        handler_map = {
            'single_updated': self._handle_single_updated,
            'queue_updated': self._handle_queue_updated,
            'item_completed': self._handle_item_completed,
            'batch_finished': self._handle_batch_finished,
            'new_version_available': self._handle_new_version_available,
            'dependency_progress': self._handle_dependency_progress,
        }
        handler = handler_map.get(msg_type)
        if handler:
            await handler(value)
        else:
            self.logger.warning(f"Unhandled manager event type: {msg_type}")

    async def _handle_single_updated(self, state: DownloadState):
        if state.status == JobStatus.COMPLETED and state.job is not None:
            await asyncio.to_thread(self.history.add, state.job, state.last_output_path)
        if self.view:
            await self.view.update_single(state)

    async def _handle_queue_updated(self, entries: List[QueueEntry]):
        if self.view:
            await self.view.update_queue(entries, self.batch.state, self.batch.get_stats())

    async def _handle_item_completed(self, entry: QueueEntry):
        await asyncio.to_thread(self.history.add, entry.descriptor, entry.result_path)

    async def _handle_batch_finished(self, stats: Dict[str, int]):
        self.logger.info("--- All queued downloads are complete! ---")
        if self.view:
            await self.view.batch_finished(stats)

    async def _handle_new_version_available(self, value: Dict[str, str]):
        if self.view:
            await self.view.show_update_notice(value['version'], value['url'])

    async def _handle_dependency_progress(self, value: Dict[str, Any]):
        if self.view:
            await self.view.update_dependency_progress(value)

    # --- Interactive path ---

    async def fetch_metadata(self, url: str) -> MediaMetadata:
        """Describes a URL. Raises MetadataFetchError on any failure."""
        self._require_yt_dlp()
        return await self.extractor.fetch_metadata(url)

    def build_job(self, url: str, metadata: Optional[MediaMetadata] = None,
                  mode: Optional[MediaMode] = None, audio_quality: Optional[str] = None,
                  format_id: Optional[str] = None, folder: Optional[str] = None) -> JobDescriptor:
        """Builds a descriptor for the interactive path from the user's choices."""
        mode = mode or self.config.default_mode
        if mode == MediaMode.AUDIO:
            format_selector = audio_quality or self.config.audio_quality
        else:
            format_selector = format_id or 'best'
        return JobDescriptor(
            job_id=new_job_id(),
            source_url=url,
            display_title=metadata.title if metadata else url,
            mode=mode,
            platform=detect_platform(url),
            format_selector=format_selector,
            output_folder_hint=folder,
            thumbnail_url=metadata.thumbnail if metadata else None,
            embed_thumbnail=self.config.embed_thumbnail,
        )

    async def start_download(self, job: JobDescriptor):
        """
        Starts an interactive download.

        Raises:
            DownloadBusyError: If a batch is processing or another download is in flight.
        """
        if self.batch.is_processing or self.router.batch_outstanding:
            raise DownloadBusyError("A batch is currently processing. Pause or cancel it first.")
        self._require_yt_dlp()
        await self.single.start(job)

    async def wait_for_download(self) -> DownloadState:
        return await self.single.wait()

    # --- Batch path ---

    async def submit_batch(self, text: Union[str, Iterable[str]], mode: Optional[MediaMode] = None,
                           audio_quality: Optional[str] = None, folder: Optional[str] = None) -> List[QueueEntry]:
        """
        Replaces the batch queue with the URLs in `text` and starts processing.

        Raises:
            DownloadBusyError: If an interactive download is in flight.
            BatchValidationError: If `text` holds no usable URL.
        """
        if self.single.busy:
            raise DownloadBusyError("A download is already in progress. Wait for it to finish first.")
        self._require_yt_dlp()
        mode = mode or self.config.default_mode
        format_selector = (audio_quality or self.config.audio_quality) if mode == MediaMode.AUDIO else 'best'
        return await self.batch.submit(text, mode, format_selector, self.config.embed_thumbnail, folder)

    async def submit_playlist(self, metadata: MediaMetadata, items: Optional[Iterable[int]] = None,
                              mode: Optional[MediaMode] = None, audio_quality: Optional[str] = None) -> List[QueueEntry]:
        """
        Queues a playlist's entries into a folder named after the playlist.

        Args:
            metadata: The playlist as described by `fetch_metadata`.
            items: 1-based positions of the entries to download; all entries if omitted.

        Raises:
            DownloadBusyError: If an interactive download is in flight.
            BatchValidationError: If no entry is selected.
        """
        selected = metadata.entries
        if items is not None:
            wanted = set(items)
            selected = [entry for i, entry in enumerate(metadata.entries, start=1) if i in wanted]
        self.logger.info(f"Queueing {len(selected)} of {len(metadata.entries)} entries from playlist '{metadata.title}'")
        return await self.submit_batch([entry.url for entry in selected], mode, audio_quality, folder=metadata.title)

    async def pause_batch(self):
        await self.batch.pause()

    async def resume_batch(self):
        await self.batch.resume()

    async def cancel_batch(self):
        await self.batch.cancel()

    async def retry_batch_item(self, index: int):
        await self.batch.retry(index)

    async def remove_batch_item(self, index: int):
        await self.batch.remove(index)

    async def set_batch_item_mode(self, index: int, mode: MediaMode):
        await self.batch.set_mode(index, mode)

    async def wait_for_batch(self):
        await self.batch.wait()

    # --- Cookies and history ---

    def save_cookies(self, content: str, platform: str) -> Path:
        return self.cookie_store.save(content, platform)

    def cookie_status(self, platform: str) -> Dict[str, Any]:
        return self.cookie_store.status(platform)

    def delete_cookies(self, platform: str):
        self.cookie_store.delete(platform)

    def get_history(self) -> List[HistoryItem]:
        return self.history.load()

    def delete_history_item(self, item_id: str) -> bool:
        return self.history.delete(item_id)

    def clear_history(self):
        self.history.clear()

    # --- Settings, dependencies and updates ---

    def save_settings(self, new_settings_data: Dict[str, Any]) -> Tuple[bool, str]:
        """Validates and saves new settings."""
        try:
            new_settings = Settings.model_validate({**self.config.model_dump(), **new_settings_data})
            self.config_manager.save(new_settings)
            self.config = new_settings
            self.app_updater.config = new_settings
            self.fetcher.download_base_path = new_settings.download_base_path
            self.fetcher.concurrent_fragments = new_settings.concurrent_fragments
            self.extractor.timeout = new_settings.metadata_timeout
            self.extractor.playlist_item_limit = new_settings.playlist_item_limit
            self.batch.cooldown = new_settings.cooldown_seconds
            self.batch.item_timeout = new_settings.item_timeout
            self.batch.metadata_timeout = new_settings.metadata_timeout
            self._apply_dependency_paths()
            return True, "Settings have been saved."
        except ValidationError as e:
            error_details = e.errors()[0]
            field, msg = error_details['loc'][0], error_details['msg']
            return False, f"Error in field '{field}': {msg}"

    async def initiate_dependency_download(self, dep_type: str) -> Dict[str, Any]:
        """
        Downloads or updates a dependency and refreshes the executable paths.

        Raises:
            DownloadCancelledError: If `cancel_dependency_download` stopped the download.
        """
        if dep_type == "yt-dlp":
            coro = self.dep_manager.install_or_update_yt_dlp()
        else:
            coro = self.dep_manager.download_ffmpeg()
        # Its own task, so a cancel reaches only the download
        task = asyncio.create_task(coro, name=f"{dep_type}-download")
        try:
            result = await task
        except DownloadCancelledError:
            raise
        except Exception as e:
            self.logger.exception(f"Error during dependency download for {dep_type}")
            result = {'type': dep_type, 'success': False, 'error': str(e)}

        if dep_type == 'yt-dlp':
            await asyncio.to_thread(self.dep_manager.find_yt_dlp)
        else:
            await asyncio.to_thread(self.dep_manager.find_ffmpeg)
        self._apply_dependency_paths()
        return result

    def cancel_dependency_download(self):
        """Cancels an in-progress dependency download."""
        self.dep_manager.cancel_download()

    async def check_for_updates(self):
        """Runs the application update check."""
        await self.app_updater.check_for_updates()

    def skip_update_version(self, version: str):
        """Stores a skipped version in config and saves it."""
        self.config.skipped_update_version = version
        self.config_manager.save(self.config)

    async def get_dependency_versions(self) -> Dict[str, str]:
        """Asynchronously fetches dependency versions."""
        yt_dlp_version, ffmpeg_version = await asyncio.gather(
            self.dep_manager.get_version(self.dep_manager.yt_dlp_path),
            self.dep_manager.get_version(self.fetcher.ffmpeg_path),
        )
        return {'yt-dlp': yt_dlp_version, 'ffmpeg': ffmpeg_version}

    async def on_app_closing(self):
        """Handles application shutdown logic."""
        self.logger.info("Application closing.")
        self.cancel_dependency_download()
        if self.batch.is_processing:
            await self.batch.cancel()
        for handle in (self.single.handle, self.batch.handle):
            if handle is not None and not handle.closed:
                handle.terminate()
        self.config_manager.save(self.config)
