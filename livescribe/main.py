"""Main application entry point for livescribe."""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from .config import EngineSettings, LiveScribeConfig
from .exceptions import DeviceError, LiveScribeError
from .models.session import SessionInfo
from .services.engine import SessionHandle, TranscriptionEngine
from .services.event_log import SessionEventLog

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = LiveScribeConfig(config_path)
        # Set up logging (override config with command line if specified)
        log_level = log_level or self.config.get('logging.level', 'INFO')
        setup_logging(self.config, log_level)
        self.console = Console()
        self.handle: Optional[SessionHandle] = None
        self.last_line = ""

    def init(self, strategy: Optional[str] = None, backend: Optional[str] = None):
        # Command line overrides go into the config before validation
        if strategy:
            self.config.set('audio.strategy', strategy)
        if backend:
            self.config.set('transcription.backend', backend)

        logger.info("Initializing services...")
        settings = EngineSettings.from_config(self.config)
        audio = settings.audio
        logger.info(f"Audio settings: {audio.sample_rate}Hz, {audio.chunk_size} samples/buffer, "
                    f"{audio.channels} channels, strategy={audio.strategy}")

        self.engine = TranscriptionEngine(settings, config=self.config)
        self.event_log = SessionEventLog()

    def _on_transcript(self, text: str) -> None:
        self.last_line = text

    def _on_error(self, error: LiveScribeError, terminal: bool) -> None:
        style = "bold red" if terminal else "yellow"
        self.console.print(f"⚠️  {error}", style=style)

    def _on_status(self, status: str) -> None:
        self.console.print(f"[dim]… {status}[/dim]")

    def run(self, duration: Optional[int]) -> SessionInfo:
        self.handle = self.engine.start(self._on_transcript, self._on_error, self._on_status)
        self.console.print(f"🔴 Recording (session {self.handle.session_id}), Ctrl+C to stop",
                           style="bold red")
        try:
            # wait() returns early when the session ends on its own
            self.handle.wait(duration)
        finally:
            info = self.engine.stop(self.handle)
        return info

    def report(self, info: SessionInfo) -> None:
        self.console.print("\n📄 TRANSCRIPT:", style="bold blue")
        self.console.print("-" * 40)
        self.console.print(info.transcript or "[dim](nothing transcribed)[/dim]")
        self.console.print("-" * 40)
        self.console.print(f"Duration: {info.duration_seconds:.1f}s, "
                           f"ended because: {info.termination_reason}")
        stats = self.handle.capture_stats() if self.handle else None
        if stats:
            self.console.print(f"Audio: {stats.total_buffers} buffers, "
                               f"peak level {stats.peak_level:.2f}")

    def cleanup(self):
        if getattr(self, 'engine', None) is not None:
            self.engine.shutdown()
        if getattr(self, 'event_log', None) is not None:
            self.event_log.shutdown()


def setup_logging(config: LiveScribeConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'data/logs/livescribe.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
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
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("livescribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for livescribe."""
    parser = argparse.ArgumentParser(
        description="livescribe - resilient real-time voice transcription"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for livescribe.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: logging.level from config, else INFO)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Stop after this many seconds (default: until Ctrl+C or the session limit)"
    )

    parser.add_argument(
        "--strategy",
        choices=["microphone", "continuous"],
        help="Capture strategy (overrides config)"
    )

    parser.add_argument(
        "--backend",
        choices=["google", "whisper"],
        help="Chunk transcription backend for the microphone strategy (overrides config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="livescribe v0.1.0"
    )

    args = parser.parse_args()

    server = None
    try:
        server = Server(args.config, args.log_level)
        server.init(args.strategy, args.backend)
        info = server.run(args.duration)
        server.report(info)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except DeviceError as e:
        print(f"🎙️  Microphone unavailable: {e}")
        logging.error(f"Device error: {e}")
        sys.exit(2)
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if server is not None:
            server.cleanup()


if __name__ == "__main__":
    main()
