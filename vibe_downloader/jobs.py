"""
Defines the data classes shared by the download controllers.

A `JobDescriptor` says what to fetch and how; a `QueueEntry` wraps one in the
mutable state the batch engine tracks for it. `ProgressEvent` is the uniform
event shape every external process is translated into.
"""

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class MediaMode(str, Enum):
    VIDEO = 'video'
    AUDIO = 'audio'


class Platform(str, Enum):
    YOUTUBE = 'youtube'
    INSTAGRAM = 'instagram'
    TIKTOK = 'tiktok'
    FACEBOOK = 'facebook'
    SPOTIFY = 'spotify'
    X = 'x'
    PINTEREST = 'pinterest'
    SOUNDCLOUD = 'soundcloud'


class JobStatus(str, Enum):
    PENDING = 'Pending'
    RESOLVING = 'Resolving'
    DOWNLOADING = 'Downloading'
    COMPLETED = 'Completed'
    FAILED = 'Failed'

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.RESOLVING, JobStatus.DOWNLOADING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class EventKind(str, Enum):
    PROGRESS = 'progress'
    ERROR = 'error'
    COMPLETED = 'completed'
    STATUS_TEXT = 'status_text'

    @property
    def is_terminal(self) -> bool:
        return self in (EventKind.ERROR, EventKind.COMPLETED)


def new_job_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class JobDescriptor:
    """
    An immutable record of one thing to download.

    Attributes:
        job_id: An opaque unique identifier.
        source_url: The URL the user supplied.
        display_title: The title shown to the user; replaced once metadata resolves.
        mode: Whether to keep the video or extract audio.
        platform: The detected source platform, if any.
        format_selector: 'best', a yt-dlp format id, or an audio quality tier.
        output_folder_hint: Optional sub folder, e.g. a playlist title.
        thumbnail_url: Cover image used for audio embedding.
        embed_thumbnail: Whether audio downloads get the cover embedded.
    """
    job_id: str
    source_url: str
    display_title: str
    mode: MediaMode = MediaMode.VIDEO
    platform: Optional[Platform] = None
    format_selector: str = 'best'
    output_folder_hint: Optional[str] = None
    thumbnail_url: Optional[str] = None
    embed_thumbnail: bool = True

    @property
    def is_audio(self) -> bool:
        return self.mode == MediaMode.AUDIO

    def with_metadata(self, title: Optional[str], thumbnail_url: Optional[str]) -> 'JobDescriptor':
        """Returns a copy carrying the resolved title and thumbnail."""
        return replace(
            self,
            display_title=title or self.display_title,
            thumbnail_url=thumbnail_url or self.thumbnail_url,
        )


@dataclass
class QueueEntry:
    """One batch item and the state the engine tracks for it."""
    descriptor: JobDescriptor
    status: JobStatus = JobStatus.PENDING
    progress_percent: float = 0.0
    last_error: Optional[str] = None
    speed: Optional[str] = None
    eta: Optional[str] = None
    status_text: Optional[str] = None
    result_path: Optional[str] = None

    @property
    def job_id(self) -> str:
        return self.descriptor.job_id

    def reset(self):
        self.status = JobStatus.PENDING
        self.progress_percent = 0.0
        self.last_error = None
        self.speed = None
        self.eta = None
        self.status_text = None
        self.result_path = None


@dataclass(frozen=True)
class ProgressEvent:
    """
    The uniform event emitted by an external process.

    `job_id` names the job whose process produced the event, so consumers can
    discard events that outlived their owner.
    """
    kind: EventKind
    job_id: Optional[str] = None
    percent: Optional[float] = None
    speed: Optional[str] = None
    eta: Optional[str] = None
    total_size: Optional[str] = None
    downloaded_size: Optional[str] = None
    message: Optional[str] = None
    result_path: Optional[str] = None

    @classmethod
    def progress(cls, job_id: Optional[str], percent: float, **fields) -> 'ProgressEvent':
        return cls(EventKind.PROGRESS, job_id=job_id, percent=percent, **fields)

    @classmethod
    def error(cls, job_id: Optional[str], message: str) -> 'ProgressEvent':
        return cls(EventKind.ERROR, job_id=job_id, message=message)

    @classmethod
    def completed(cls, job_id: Optional[str], result_path: Optional[str] = None) -> 'ProgressEvent':
        return cls(EventKind.COMPLETED, job_id=job_id, result_path=result_path)

    @classmethod
    def status_text(cls, job_id: Optional[str], message: str) -> 'ProgressEvent':
        return cls(EventKind.STATUS_TEXT, job_id=job_id, message=message)


@dataclass
class DownloadState:
    """Observable state of the single interactive download."""
    job: Optional[JobDescriptor] = None
    busy: bool = False
    progress_percent: float = 0.0
    speed: Optional[str] = None
    eta: Optional[str] = None
    status_text: Optional[str] = None
    last_error: Optional[str] = None
    last_output_path: Optional[str] = None
    status: Optional[JobStatus] = None

    def copy(self) -> 'DownloadState':
        return replace(self)
