"""
Main entry point for chunkscribe.

Run with:
    python -m chunkscribe transcribe meeting.wav -o meeting.txt
    python -m chunkscribe speak chapter.txt -o chapter.wav
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .audio import pcm_duration, pcm_to_wav_bytes
from .cancel import CancellationToken
from .config import Config
from .errors import Cancelled, ChunkPipelineError, PartialSuccess
from .metrics import MetricsWriter
from .pipeline import ChunkPipeline, SpeechPipeline, TranscriptionPipeline
from .progress import ProgressObserver
from .providers.gemini import GeminiSpeechSynthesizer, GeminiTranscriber


logger = logging.getLogger("chunkscribe")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 130


class ConsoleObserver(ProgressObserver):
    """Prints progress to stderr."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr

    def _print(self, message: str) -> None:
        print(message, file=self.stream, flush=True)

    def chunking_started(self, total_chunks: int) -> None:
        self._print(f"Split into {total_chunks} chunk(s)")

    def chunk_failed(self, index: int, error: BaseException, will_retry: bool) -> None:
        suffix = "retrying" if will_retry else "giving up"
        self._print(f"  Chunk {index + 1} failed ({error}), {suffix}")

    def progress_updated(self, completed: int, total: int) -> None:
        self._print(f"  {completed}/{total} chunks done")

    def merging_started(self) -> None:
        self._print("Merging...")

    def rate_limit_waiting(self, seconds: float) -> None:
        self._print(f"Rate limited, pausing all requests for {seconds:.0f}s")

    def rate_limit_resolved(self) -> None:
        self._print("Rate limit pause over, resuming")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkscribe",
        description="Transcribe long audio or synthesize long text in parallel chunks.",
    )
    parser.add_argument("--concurrency", type=int, help="Max chunks in flight")
    parser.add_argument("--attempts", type=int, help="Max attempts per chunk")
    parser.add_argument(
        "--gap-markers", action="store_true", default=None,
        help="Mark failed chunks in the transcript instead of joining around them",
    )
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe an audio file")
    transcribe.add_argument("audio", type=Path, help="Audio file (any format soundfile reads)")
    transcribe.add_argument("-o", "--output", type=Path, help="Transcript file (default: stdout)")

    speak = subparsers.add_parser("speak", help="Synthesize speech for a text file")
    speak.add_argument("text", type=Path, help="UTF-8 text file")
    speak.add_argument("-o", "--output", type=Path, required=True, help="WAV file to write")

    return parser


def _build_pipeline(args: argparse.Namespace, config: Config, metrics: Optional[MetricsWriter]) -> ChunkPipeline:
    settings = config.snapshot()
    observer = ConsoleObserver()
    if args.command == "transcribe":
        client = GeminiTranscriber(prompt=settings.transcription_prompt, timeout=settings.request_timeout)
        return TranscriptionPipeline(client, settings, observer=observer, metrics=metrics)
    client = GeminiSpeechSynthesizer(voice=settings.tts_voice, timeout=settings.request_timeout)
    return SpeechPipeline(client, settings, observer=observer, metrics=metrics)


def _write_output(args: argparse.Namespace, output) -> None:
    if args.command == "speak":
        args.output.write_bytes(pcm_to_wav_bytes(output))
        print(f"Wrote {args.output} ({pcm_duration(output):.1f}s of audio)", file=sys.stderr)
    elif args.output:
        args.output.write_text(output + "\n", encoding="utf-8")
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        print(output)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = Config.load()
    config.update(
        max_concurrency=args.concurrency,
        max_attempts=args.attempts,
        gap_markers=args.gap_markers,
        log_level=args.log_level,
    )
    setup_logging(config.log_level)

    if not config.gemini_api_key:
        logger.error("No API key found. Set GEMINI_API_KEY or add it to %s", config.env_file)
        return EXIT_FAILURE

    try:
        if args.command == "transcribe":
            source = args.audio
        else:
            source = args.text.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("Cannot read input: %s", e)
        return EXIT_FAILURE

    metrics = MetricsWriter(config.metrics_file) if config.metrics_enabled else None
    token = CancellationToken()

    def _signal_handler(signum, frame):
        """Cancel on SIGINT; in-flight chunks finish or stop at their next check."""
        print("\nCancelling...", file=sys.stderr)
        token.cancel()

    previous_handler = signal.signal(signal.SIGINT, _signal_handler)

    try:
        with _build_pipeline(args, config, metrics) as pipeline:
            result = pipeline.run(source, token)
        _write_output(args, result.output)
        if result.partial:
            logger.warning("Chunks %s failed; output has gaps", [i + 1 for i in result.failed_indices])
            return EXIT_PARTIAL
        return EXIT_OK

    except PartialSuccess as e:
        _write_output(args, e.output)
        logger.warning("Chunks %s failed; output has gaps", [i + 1 for i in e.failed_indices])
        return EXIT_PARTIAL
    except Cancelled:
        logger.warning("Cancelled")
        return EXIT_CANCELLED
    except (ChunkPipelineError, ValueError) as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        if metrics:
            metrics.shutdown()


if __name__ == "__main__":
    sys.exit(main())
