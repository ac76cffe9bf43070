# hls_runner/managers/conversion_manager.py
"""
Conversion manager for HLS Runner.
Schedules the video, thumbnail and subtitle pipelines of each conversion,
aggregates their events into a queryable state and reports completion.
"""

import os
import threading
import time
import uuid
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional

import httpx

from hls_runner.core.config import config
from hls_runner.core.setup_logging import setup_default_logging
from hls_runner.encoding import playlist, subtitles, thumbnails, transcoder
from hls_runner.encoding.cleanup import cleanup as cleanup_output
from hls_runner.encoding.encoders import EncoderProbe, EncoderSupport
from hls_runner.encoding.errors import ErrorKind, HLSError, as_hls_error
from hls_runner.encoding.options import ConversionOptions, RenditionSpec
from hls_runner.encoding.probe import SourceInfo, probe_source
from hls_runner.encoding.progress import (
    AssemblingSprite,
    Completed,
    DetectingStreams,
    EncodingOutput,
    ExtractingFrames,
    ExtractingTrack,
    Failed,
    RenditionProgress,
    SegmentingTrack,
    Started,
    SubtitlesCompleted,
    SubtitlesFailed,
    ThumbnailsCompleted,
    ThumbnailsFailed,
    WritingPlaylist,
    WritingVTT,
)
from hls_runner.encoding.toolchain import CancellationToken, Toolchain
from hls_runner.encoding.tracks import SubtitleTrack

logger = setup_default_logging()

Listener = Callable[["ConversionState", str, object], None]

VIDEO = "video"
THUMBNAILS = "thumbnails"
SUBTITLES = "subtitles"


class ConversionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineStatus(str, Enum):
    DISABLED = "disabled"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class OutputDirectoryBusyError(Exception):
    """Another conversion is already writing to the output directory."""

    def __init__(self, output_dir: str, conversion_id: str):
        self.output_dir = output_dir
        self.conversion_id = conversion_id
        super().__init__(
            f"Output directory {output_dir} is in use by conversion {conversion_id}"
        )


class ConversionNotFoundError(KeyError):
    pass


class ConversionRunningError(Exception):
    """The operation is refused while the conversion runs."""


class ConversionState:
    """
    Aggregated progress of one conversion.

    Each pipeline thread writes its own fields; readers go through
    ``snapshot()``. All access happens under the state lock.
    """

    def __init__(
        self,
        conversion_id: str,
        input_path: str,
        output_dir: str,
        options: ConversionOptions,
        max_log_lines: int = 500,
    ):
        self.conversion_id = conversion_id
        self.input_path = input_path
        self.output_dir = output_dir
        self.options = options
        self.status = ConversionStatus.PENDING
        self.created_at = datetime.now().isoformat()
        self.updated_at = self.created_at
        self.source: Optional[SourceInfo] = None
        self.encoder: Optional[str] = None
        self.renditions: List[RenditionSpec] = []
        self.rendition_progress: Dict[str, float] = {}
        self.master_playlist: Optional[str] = None
        self.pipelines: Dict[str, PipelineStatus] = {
            VIDEO: PipelineStatus.PENDING,
            THUMBNAILS: (
                PipelineStatus.PENDING if options.thumbnails_enabled else PipelineStatus.DISABLED
            ),
            SUBTITLES: (
                PipelineStatus.PENDING if options.subtitles_enabled else PipelineStatus.DISABLED
            ),
        }
        self.thumbnail_progress = 0.0
        self.sprite_path: Optional[str] = None
        self.vtt_path: Optional[str] = None
        self.subtitle_tracks: List[SubtitleTrack] = []
        self.errors: Dict[str, HLSError] = {}
        self.logs: deque = deque(maxlen=max_log_lines)
        self._lock = threading.RLock()

    # ----- writers -----

    def update(self, **fields) -> None:
        with self._lock:
            for key, value in fields.items():
                setattr(self, key, value)
            self.updated_at = datetime.now().isoformat()

    def set_pipeline(self, pipeline: str, status: PipelineStatus) -> None:
        with self._lock:
            self.pipelines[pipeline] = status
            self.updated_at = datetime.now().isoformat()

    def set_rendition_progress(self, name: str, fraction: float) -> None:
        with self._lock:
            self.rendition_progress[name] = fraction

    def record_error(self, pipeline: str, error: HLSError) -> None:
        with self._lock:
            self.errors[pipeline] = error
            self.pipelines[pipeline] = PipelineStatus.FAILED
            self.updated_at = datetime.now().isoformat()

    def log(self, message: str) -> None:
        with self._lock:
            self.logs.append(message)

    # ----- readers -----

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self.status in (ConversionStatus.PENDING, ConversionStatus.RUNNING)

    @property
    def progress(self) -> float:
        """Mean progress of the planned renditions."""
        with self._lock:
            if not self.rendition_progress:
                return 0.0
            return sum(self.rendition_progress.values()) / len(self.rendition_progress)

    @property
    def error(self) -> Optional[HLSError]:
        """First error, video pipeline first."""
        with self._lock:
            for pipeline in (VIDEO, THUMBNAILS, SUBTITLES):
                if pipeline in self.errors:
                    return self.errors[pipeline]
            return None

    @property
    def cleanup_offered(self) -> bool:
        with self._lock:
            return self.status is ConversionStatus.FAILED

    def snapshot(self) -> dict:
        with self._lock:
            error = self.error
            return {
                "conversion_id": self.conversion_id,
                "input_path": self.input_path,
                "output_dir": self.output_dir,
                "status": self.status.value,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "source": self.source.as_dict() if self.source else None,
                "encoder": self.encoder,
                "renditions": [spec.name for spec in self.renditions],
                "rendition_progress": dict(self.rendition_progress),
                "progress": self.progress,
                "master_playlist": self.master_playlist,
                "pipelines": {name: status.value for name, status in self.pipelines.items()},
                "thumbnails": {
                    "progress": self.thumbnail_progress,
                    "sprite_path": self.sprite_path,
                    "vtt_path": self.vtt_path,
                },
                "subtitle_tracks": [track.as_dict() for track in self.subtitle_tracks],
                "error": error.as_dict() if error else None,
                "cleanup_offered": self.cleanup_offered,
                "logs": list(self.logs),
            }


class _Conversion:
    """Runtime companions of a conversion state."""

    def __init__(
        self,
        state: ConversionState,
        excluded: List[RenditionSpec],
        token: CancellationToken,
        listener: Optional[Listener],
        completion_callback: Optional[str],
    ):
        self.state = state
        self.excluded = excluded
        self.token = token
        self.listener = listener
        self.completion_callback = completion_callback
        self.thread: Optional[threading.Thread] = None
        self.directory_key = os.path.realpath(state.output_dir)


class ConversionManager:
    """
    Runs conversions and keeps their state.

    A conversion probes its source once, runs the video pipeline and, when
    enabled, the thumbnail and subtitle pipelines either alongside it
    (concurrent) or after it succeeded (sequential).
    """

    def __init__(
        self,
        toolchain: Toolchain,
        max_log_lines: int = 500,
        grace_period: float = 5.0,
        encoder_probe: Optional[EncoderSupport] = None,
    ):
        self.toolchain = toolchain
        self.max_log_lines = max_log_lines
        self.grace_period = grace_period
        self.encoder_probe = encoder_probe or EncoderProbe(
            toolchain, timeout=config.ENCODER_PROBE_TIMEOUT_SECONDS
        )
        self._conversions: Dict[str, _Conversion] = {}
        self._active_directories: Dict[str, str] = {}
        self._lock = threading.Lock()

    # ======================================================
    # Public API
    # ======================================================

    def start(
        self,
        input_path: str,
        output_dir: str,
        options: ConversionOptions,
        excluded: Iterable[RenditionSpec] = (),
        listener: Optional[Listener] = None,
        completion_callback: Optional[str] = None,
    ) -> ConversionState:
        """
        Start a conversion in a worker thread and return immediately.

        Raises:
            OutputDirectoryBusyError: If the output directory has an active conversion
        """
        conversion = self._register(
            input_path, output_dir, options, excluded, listener, completion_callback
        )
        thread = threading.Thread(
            target=self._execute,
            args=(conversion,),
            name=f"conversion-{conversion.state.conversion_id[:8]}",
            daemon=True,
        )
        conversion.thread = thread
        thread.start()
        return conversion.state

    def run(
        self,
        input_path: str,
        output_dir: str,
        options: ConversionOptions,
        excluded: Iterable[RenditionSpec] = (),
        listener: Optional[Listener] = None,
        completion_callback: Optional[str] = None,
    ) -> ConversionState:
        """Run a conversion in the calling thread."""
        conversion = self._register(
            input_path, output_dir, options, excluded, listener, completion_callback
        )
        self._execute(conversion)
        return conversion.state

    def get(self, conversion_id: str) -> ConversionState:
        return self._get(conversion_id).state

    def list(self) -> List[ConversionState]:
        with self._lock:
            return [conversion.state for conversion in self._conversions.values()]

    def active_count(self) -> int:
        with self._lock:
            return len(self._active_directories)

    def cancel(self, conversion_id: str) -> bool:
        """
        Cancel every pipeline of a conversion.

        Returns:
            bool: False if the conversion had already finished
        """
        conversion = self._get(conversion_id)
        if not conversion.state.is_active:
            return False
        logger.info(f"Cancelling conversion {conversion_id}", extra={"conversion_id": conversion_id})
        conversion.state.log("Cancellation requested")
        conversion.token.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            conversions = list(self._conversions.values())
        for conversion in conversions:
            if conversion.state.is_active:
                conversion.token.cancel()

    def cleanup(self, conversion_id: str) -> int:
        """
        Remove the output of a finished conversion.

        Raises:
            ConversionRunningError: If the conversion is still running
        """
        conversion = self._get(conversion_id)
        if conversion.state.is_active:
            raise ConversionRunningError(f"Conversion {conversion_id} is still running")
        removed = cleanup_output(conversion.state.output_dir)
        conversion.state.log(f"Cleanup removed {removed} items")
        return removed

    def wait(self, conversion_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for a conversion started with ``start``; True once it finished."""
        conversion = self._get(conversion_id)
        if conversion.thread is not None:
            conversion.thread.join(timeout)
        return not conversion.state.is_active

    # ======================================================
    # Registration
    # ======================================================

    def _get(self, conversion_id: str) -> _Conversion:
        with self._lock:
            conversion = self._conversions.get(conversion_id)
        if conversion is None:
            raise ConversionNotFoundError(conversion_id)
        return conversion

    def _register(
        self,
        input_path: str,
        output_dir: str,
        options: ConversionOptions,
        excluded: Iterable[RenditionSpec],
        listener: Optional[Listener],
        completion_callback: Optional[str],
    ) -> _Conversion:
        conversion_id = str(uuid.uuid4())
        state = ConversionState(conversion_id, input_path, output_dir, options, self.max_log_lines)
        conversion = _Conversion(
            state=state,
            excluded=list(excluded),
            token=CancellationToken(grace_period=self.grace_period),
            listener=listener,
            completion_callback=completion_callback,
        )
        with self._lock:
            owner = self._active_directories.get(conversion.directory_key)
            if owner is not None:
                raise OutputDirectoryBusyError(output_dir, owner)
            self._active_directories[conversion.directory_key] = conversion_id
            self._conversions[conversion_id] = conversion
        logger.info(
            f"Conversion {conversion_id} registered: {input_path} -> {output_dir}",
            extra={"conversion_id": conversion_id},
        )
        return conversion

    def _release(self, conversion: _Conversion) -> None:
        with self._lock:
            if self._active_directories.get(conversion.directory_key) == conversion.state.conversion_id:
                del self._active_directories[conversion.directory_key]

    # ======================================================
    # Execution
    # ======================================================

    def _execute(self, conversion: _Conversion) -> None:
        state = conversion.state
        state.update(status=ConversionStatus.RUNNING)
        state.log(f"Converting {state.input_path}")
        try:
            self._run_pipelines(conversion)
        except Exception as e:
            logger.exception(
                f"Unexpected error in conversion {state.conversion_id}",
                extra={"conversion_id": state.conversion_id},
            )
            state.record_error(VIDEO, as_hls_error(e))
        finally:
            self._finish(conversion)

    def _run_pipelines(self, conversion: _Conversion) -> None:
        state = conversion.state
        options = state.options

        try:
            source = probe_source(self.toolchain, state.input_path, token=conversion.token)
        except HLSError as e:
            state.record_error(VIDEO, e)
            state.log(f"Error: {e.message}")
            for pipeline in (THUMBNAILS, SUBTITLES):
                if state.pipelines[pipeline] is PipelineStatus.PENDING:
                    state.set_pipeline(pipeline, PipelineStatus.SKIPPED)
            return
        state.update(source=source)

        side_pipelines = []
        if options.thumbnails_enabled:
            side_pipelines.append(
                (THUMBNAILS, options.thumbnails.concurrent, self._run_thumbnails)
            )
        if options.subtitles_enabled:
            side_pipelines.append((SUBTITLES, options.subtitles.concurrent, self._run_subtitles))

        workers = []
        for pipeline, concurrent, runner in side_pipelines:
            if concurrent:
                worker = threading.Thread(
                    target=runner,
                    args=(conversion, source),
                    name=f"{pipeline}-{state.conversion_id[:8]}",
                    daemon=True,
                )
                workers.append(worker)
                worker.start()

        self._run_video(conversion, source)
        video_completed = state.pipelines[VIDEO] is PipelineStatus.COMPLETED

        for pipeline, concurrent, runner in side_pipelines:
            if concurrent:
                continue
            if video_completed and not conversion.token.cancelled:
                runner(conversion, source)
            else:
                state.set_pipeline(pipeline, PipelineStatus.SKIPPED)
                state.log(f"{pipeline.capitalize()} skipped: video conversion did not complete")

        for worker in workers:
            worker.join()

        if video_completed and state.subtitle_tracks:
            try:
                master = playlist.finalize(
                    state.output_dir, state.renditions, state.subtitle_tracks
                )
                state.update(master_playlist=str(master))
                state.log("Master playlist updated with subtitle tracks")
            except HLSError as e:
                state.record_error(SUBTITLES, e)

    def _consume(self, conversion: _Conversion, pipeline: str, events: Iterator) -> None:
        for event in events:
            self._apply_event(conversion.state, pipeline, event)
            if conversion.listener is not None:
                try:
                    conversion.listener(conversion.state, pipeline, event)
                except Exception:
                    logger.exception("Conversion listener raised, ignoring")

    def _run_video(self, conversion: _Conversion, source: SourceInfo) -> None:
        state = conversion.state
        state.set_pipeline(VIDEO, PipelineStatus.RUNNING)
        self._consume(
            conversion,
            VIDEO,
            transcoder.convert(
                self.toolchain,
                state.input_path,
                state.output_dir,
                state.options,
                excluded=conversion.excluded,
                token=conversion.token,
                probe=self.encoder_probe,
                source=source,
            ),
        )

    def _run_thumbnails(self, conversion: _Conversion, source: SourceInfo) -> None:
        state = conversion.state
        state.set_pipeline(THUMBNAILS, PipelineStatus.RUNNING)
        self._consume(
            conversion,
            THUMBNAILS,
            thumbnails.generate(
                self.toolchain,
                state.input_path,
                state.output_dir,
                state.options.thumbnails,
                source.duration,
                source.width,
                source.height,
                token=conversion.token,
            ),
        )

    def _run_subtitles(self, conversion: _Conversion, source: SourceInfo) -> None:
        state = conversion.state
        state.set_pipeline(SUBTITLES, PipelineStatus.RUNNING)
        self._consume(
            conversion,
            SUBTITLES,
            subtitles.process(
                self.toolchain,
                state.input_path,
                state.output_dir,
                state.options.subtitles,
                state.options.target_duration,
                token=conversion.token,
            ),
        )

    def _apply_event(self, state: ConversionState, pipeline: str, event) -> None:
        """Fold one pipeline event into the conversion state."""
        if isinstance(event, EncodingOutput):
            state.log(event.line)
        elif isinstance(event, RenditionProgress):
            state.set_rendition_progress(event.rendition.name, event.fraction)
        elif isinstance(event, Started):
            state.update(
                encoder=event.encoder,
                renditions=list(event.renditions),
                rendition_progress={spec.name: 0.0 for spec in event.renditions},
            )
            state.log(
                f"Encoding {', '.join(spec.name for spec in event.renditions)} with {event.encoder}"
            )
        elif isinstance(event, Completed):
            state.update(master_playlist=str(event.master_playlist))
            state.set_pipeline(VIDEO, PipelineStatus.COMPLETED)
            state.log("Video conversion completed")
        elif isinstance(event, ExtractingFrames):
            state.update(thumbnail_progress=event.fraction)
        elif isinstance(event, AssemblingSprite):
            state.log("Assembling thumbnail sprite")
        elif isinstance(event, WritingVTT):
            state.log("Writing thumbnail VTT")
        elif isinstance(event, ThumbnailsCompleted):
            state.update(
                thumbnail_progress=1.0,
                sprite_path=str(event.sprite_path),
                vtt_path=str(event.vtt_path),
            )
            state.set_pipeline(THUMBNAILS, PipelineStatus.COMPLETED)
            state.log("Thumbnails completed")
        elif isinstance(event, DetectingStreams):
            state.log("Detecting embedded subtitle streams")
        elif isinstance(event, ExtractingTrack):
            state.log(f"Extracting subtitle track {event.current}/{event.total}: {event.track.name}")
        elif isinstance(event, SegmentingTrack):
            state.log(f"Segmenting subtitle track {event.track.identity}")
        elif isinstance(event, WritingPlaylist):
            state.log(f"Subtitle playlist written: {event.track.playlist_filename}")
        elif isinstance(event, SubtitlesCompleted):
            state.update(subtitle_tracks=list(event.tracks))
            state.set_pipeline(SUBTITLES, PipelineStatus.COMPLETED)
            state.log(f"Subtitles completed ({len(event.tracks)} tracks)")
        elif isinstance(event, (Failed, ThumbnailsFailed, SubtitlesFailed)):
            state.record_error(pipeline, event.error)
            state.log(f"Error ({pipeline}): {event.error.message}")

    def _finish(self, conversion: _Conversion) -> None:
        state = conversion.state
        if conversion.token.cancelled or any(
            error.kind is ErrorKind.CANCELLED for error in state.errors.values()
        ):
            status = ConversionStatus.CANCELLED
        elif state.errors:
            status = ConversionStatus.FAILED
        else:
            status = ConversionStatus.COMPLETED
        state.update(status=status)
        self._release(conversion)

        logger.info(
            f"Conversion {state.conversion_id} {status.value}",
            extra={"conversion_id": state.conversion_id},
        )
        if conversion.completion_callback:
            notify_completion(conversion.completion_callback, state)


def notify_completion(callback_url: str, state: ConversionState) -> bool:
    """
    POST the final status of a conversion to a callback URL.

    Retries with exponential backoff according to the COMPLETION_NOTIFY_* settings.

    Returns:
        bool: True once the callback answered with a 2xx status
    """
    max_retries = max(0, int(config.COMPLETION_NOTIFY_MAX_RETRIES))
    base_delay = max(0.0, float(config.COMPLETION_NOTIFY_RETRY_DELAY_SECONDS))
    backoff_factor = max(1.0, float(config.COMPLETION_NOTIFY_BACKOFF_FACTOR))
    timeout = httpx.Timeout(10.0, connect=5.0)

    snapshot = state.snapshot()
    payload = {
        "conversion_id": snapshot["conversion_id"],
        "status": snapshot["status"],
        "error": snapshot["error"],
        "master_playlist": snapshot["master_playlist"],
    }

    attempt = 0
    while True:
        attempt += 1
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(
                    callback_url,
                    json=payload,
                    headers={
                        "Accept": "application/json",
                        "Authorization": f"Bearer {config.HLS_RUNNER_TOKEN}",
                    },
                )
            if response.is_success:
                logger.info(
                    f"Completion notification sent for conversion {state.conversion_id}"
                    + (f" after {attempt} attempts" if attempt > 1 else "")
                )
                return True

            logger.warning(
                "Completion notification failed (attempt %s/%s): %s - %s",
                attempt,
                max_retries + 1,
                response.status_code,
                response.text,
            )
        except httpx.HTTPError as e:
            logger.error(
                "Error sending completion notification to %s (attempt %s/%s): %s",
                callback_url,
                attempt,
                max_retries + 1,
                str(e),
            )

        if attempt > max_retries:
            return False

        delay = base_delay * (backoff_factor ** (attempt - 1))
        if delay > 0:
            logger.warning(
                "Retrying completion notification for conversion %s in %.1f seconds",
                state.conversion_id,
                delay,
            )
            time.sleep(delay)
