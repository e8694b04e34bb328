"""Main application entry point for whisperqueue."""

import sys
import shutil
import wave
import argparse
import logging
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console
from rich.table import Table

from .config import WhisperQueueConfig
from .models import RecordingInfo, TranscriptionParameters, TranscriptionTask
from .services import TimerBackgroundCoordinator, TranscriptionWorker
from .storage import JsonRecordingCatalog, TaskQueue
from .transcription import (
    CombinedTranscriptionExecutor,
    LocalTranscriptionExecutor,
    RemoteApiClient,
    RemoteTranscriptionExecutor,
    WhisperModelManager,
    WorkerPublisher,
)
from .transcription.local_executor import wave_duration

logger = logging.getLogger(__name__)


class Application:
    """Wires the queue, catalog, executors and worker from configuration."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        self.config = WhisperQueueConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()

        self.catalog = JsonRecordingCatalog(
            Path(self.config.get('storage.catalog_file')),
            Path(self.config.get('storage.recordings_directory')),
        )
        self.task_queue = TaskQueue(Path(self.config.get('storage.queue_file')))

    def create_worker(self, auto_process: bool = True) -> TranscriptionWorker:
        model_manager = WhisperModelManager(
            download_root=self.config.get('local.models_directory'),
            device=self.config.get('local.device', 'cpu'),
            compute_type=self.config.get('local.compute_type', 'int8'),
            beam_size=self.config.get('local.beam_size', 5),
        )
        local = LocalTranscriptionExecutor(
            model_manager,
            default_model=self.config.get('transcription.model', 'tiny'),
        )

        remote = None
        base_url = self.config.get('remote.base_url')
        if base_url:
            api_client = RemoteApiClient(
                base_url,
                api_key=self.config.get('remote.api_key'),
                user_id=self.config.get('remote.user_id'),
                chunk_size=self.config.get('remote.chunk_size'),
                timeout=self.config.get('remote.timeout'),
            )
            remote = RemoteTranscriptionExecutor(api_client, poll_interval=self.config.get('remote.poll_interval'))

        return TranscriptionWorker(
            task_queue=self.task_queue,
            catalog=self.catalog,
            executor=CombinedTranscriptionExecutor(local, remote),
            coordinator=TimerBackgroundCoordinator(self.config.get('background.grant_seconds')),
            publisher=WorkerPublisher(),
            continuation_delay=self.config.get('background.continuation_delay'),
            auto_resume_paused=self.config.get('background.auto_resume_paused', False),
            auto_process=auto_process,
        )

    def add_recordings(self, files: List[str], title: Optional[str] = None) -> None:
        for file_name in files:
            source = Path(file_name)
            if not source.exists():
                raise FileNotFoundError(f"Audio file not found: {source}")
            duration = wave_duration(source)
            target = self.catalog.recordings_dir / source.name
            if source.resolve() != target.resolve():
                shutil.copy2(source, target)

            recording = RecordingInfo(file_name=target.name, duration=duration, title=title or source.stem)
            self.catalog.add_recording(recording)
            self.console.print(f"Added [bold]{recording.id}[/bold] ({duration:.1f}s)", style="green")

    def enqueue(self, recording_id: str, model_name: Optional[str], is_remote: bool,
                language: Optional[str], prompt: Optional[str], translate: bool) -> None:
        if is_remote:
            self.config.get_remote_base_url()
        worker = self.create_worker(auto_process=False)
        parameters = TranscriptionParameters(
            language=language or self.config.get('transcription.language'),
            initial_prompt=prompt,
            should_translate=translate,
        )
        task = worker.enqueue_task_for_recording_id(
            recording_id,
            parameters,
            model_name=model_name or self.config.get('transcription.model', 'tiny'),
            is_remote=is_remote,
        )
        if task is None:
            self.console.print(f"{recording_id} is already queued", style="yellow")
        else:
            self.console.print(f"Queued {recording_id} as task {task.id}", style="green")

    def run(self) -> None:
        worker = self.create_worker()
        self._watch(worker, worker.start)

    def resume(self, recording_id: Optional[str]) -> None:
        worker = self.create_worker()
        tasks = [t for t in worker.paused_tasks() if recording_id in (None, t.recording_id)]
        if not tasks:
            self.console.print("No paused tasks to resume", style="yellow")
            return

        def begin() -> bool:
            for task in reversed(tasks):
                worker.resume_task(task)
            return worker.is_processing

        self._watch(worker, begin)

    def cancel(self, recording_id: Optional[str]) -> None:
        worker = self.create_worker(auto_process=False)
        if recording_id is None:
            worker.cancel_all_tasks()
            self.console.print("Canceled all queued tasks", style="green")
        elif worker.cancel_task_for_recording_id(recording_id):
            self.console.print(f"Canceled task for {recording_id}", style="green")
        else:
            self.console.print(f"No task queued for {recording_id}", style="yellow")

    def _watch(self, worker: TranscriptionWorker, begin: Callable[[], bool]) -> None:
        last_seen = {}

        def report(recording_id, transcription) -> None:
            if transcription is None:
                return
            description = transcription.status.describe()
            if last_seen.get(recording_id) != description:
                last_seen[recording_id] = description
                self.console.print(f"[bold]{recording_id}[/bold]: {description}")

        with worker.transcription_stream() as stream:
            if not begin():
                self.console.print("Nothing to transcribe", style="yellow")
                return
            try:
                while not worker.wait_until_idle(timeout=0.2):
                    for recording_id, transcription in stream.drain():
                        report(recording_id, transcription)
            except KeyboardInterrupt:
                self.console.print("\nPausing active transcription...", style="yellow")
                worker.shutdown()
            for recording_id, transcription in stream.drain():
                report(recording_id, transcription)

    def print_status(self, show_text: bool = False) -> None:
        queue_table = Table(title="Queue")
        queue_table.add_column("#", justify="right")
        queue_table.add_column("Task")
        queue_table.add_column("Recording")
        queue_table.add_column("Executor")
        queue_table.add_column("Offset", justify="right")
        for position, task in enumerate(self.task_queue.snapshot(), start=1):
            queue_table.add_row(str(position), task.id[:8], task.recording_id,
                                _executor_label(task), f"{task.offset / 1000:.1f}s")
        self.console.print(queue_table)

        recordings_table = Table(title="Recordings")
        recordings_table.add_column("Recording")
        recordings_table.add_column("Title")
        recordings_table.add_column("Duration", justify="right")
        recordings_table.add_column("Status")
        recordings_table.add_column("Segments", justify="right")
        for recording in self.catalog.list_recordings():
            transcription = recording.transcription
            recordings_table.add_row(
                recording.id,
                recording.title,
                f"{recording.duration:.1f}s",
                transcription.status.describe() if transcription else "-",
                str(len(recording.segments)),
            )
        self.console.print(recordings_table)

        if show_text:
            for recording in self.catalog.list_recordings():
                if recording.transcription and recording.transcription.text:
                    self.console.print(f"\n[bold]{recording.id}[/bold]\n{recording.transcription.text}")


def _executor_label(task: TranscriptionTask) -> str:
    if task.is_remote:
        return f"remote ({task.remote_job_id})" if task.remote_job_id else "remote"
    return f"local ({task.model_name})"


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/whisperqueue.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("whisperqueue starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="whisperqueue - durable, resumable transcription queue"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (overrides config)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="whisperqueue v0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="Register WAV recordings in the catalog")
    add_parser.add_argument("files", nargs="+", help="16-bit PCM WAV files")
    add_parser.add_argument("--title", help="Title for the recordings (default: file name)")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a recording for transcription")
    enqueue_parser.add_argument("recording_id", help="Recording file name")
    enqueue_parser.add_argument("--model", help="Local model name (overrides config)")
    enqueue_parser.add_argument("--remote", action="store_true", help="Use the remote transcription service")
    enqueue_parser.add_argument("--language", help="Spoken language code (default: auto-detect)")
    enqueue_parser.add_argument("--prompt", help="Initial prompt passed to the model")
    enqueue_parser.add_argument("--translate", action="store_true", help="Translate to English")

    subparsers.add_parser("run", help="Process the queue until it is empty")

    status_parser = subparsers.add_parser("status", help="Show the queue and recordings")
    status_parser.add_argument("--text", action="store_true", help="Print transcription text")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel queued tasks")
    cancel_parser.add_argument("recording_id", nargs="?", help="Recording to cancel (default: all)")

    resume_parser = subparsers.add_parser("resume", help="Resume paused tasks and process the queue")
    resume_parser.add_argument("recording_id", nargs="?", help="Recording to resume (default: all paused)")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for whisperqueue."""
    args = build_parser().parse_args(argv)

    try:
        app = Application(args.config, args.log_level)
        if args.command == "add":
            app.add_recordings(args.files, args.title)
        elif args.command == "enqueue":
            app.enqueue(args.recording_id, args.model, args.remote,
                        args.language, args.prompt, args.translate)
        elif args.command == "run":
            app.run()
        elif args.command == "status":
            app.print_status(args.text)
        elif args.command == "cancel":
            app.cancel(args.recording_id)
        elif args.command == "resume":
            app.resume(args.recording_id)
    except (ValueError, FileNotFoundError, wave.Error) as e:
        print(f"Error: {e}", file=sys.stderr)
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
