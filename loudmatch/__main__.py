"""
Command-line loudness comparison.

Usage:
    python -m loudmatch TRACK_A [TRACK_B] [--cap-db 12] [--offload process]
"""

import argparse
import logging
import sys
from typing import List, Optional

from .analysis import LoudnessAnalyzer
from .audio_io import load_audio
from .config import AnalyzerConfig
from .errors import ConfigLoadError
from .formatting import format_db, format_time
from .worker import shutdown_offload_manager

TRACK_KEYS = ("A", "B")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loudmatch",
        description="Measure integrated loudness and peak of up to two tracks and level-match them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m loudmatch mix_v1.wav mix_v2.wav
    python -m loudmatch master.flac --offload off --verbose
        """,
    )
    parser.add_argument("tracks", nargs="+", help="One or two audio files")
    parser.add_argument("--cap-db", type=float, default=None, help="Maximum attenuation in dB (default: 12)")
    parser.add_argument("--config", "-c", default=None, help="YAML configuration file")
    parser.add_argument(
        "--offload",
        choices=("process", "inline", "off"),
        default=None,
        help="Where the block integration runs (default: process)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def load_config(args: argparse.Namespace) -> AnalyzerConfig:
    config = AnalyzerConfig.from_yaml(args.config) if args.config else AnalyzerConfig()
    config = AnalyzerConfig.from_env(config)
    if args.cap_db is not None:
        config.cap_db = args.cap_db
    if args.offload is not None:
        config.offload_mode = args.offload
    if args.verbose:
        config.verbose = True
    config.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.tracks) > len(TRACK_KEYS):
        parser.error(f"at most {len(TRACK_KEYS)} tracks can be compared")

    try:
        config = load_config(args)
    except ConfigLoadError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    tracks = {}
    for key, path in zip(TRACK_KEYS, args.tracks):
        try:
            tracks[key] = load_audio(path)
        except (FileNotFoundError, RuntimeError) as e:
            print(f"Track {key}: {e}", file=sys.stderr)
            return 1

    try:
        with LoudnessAnalyzer(config=config) as analyzer:
            results = analyzer.analyze_tracks(tracks)
    finally:
        shutdown_offload_manager()

    for key, path in zip(TRACK_KEYS, args.tracks):
        result = results[key]
        attenuation = -result.offset_db if result.offset_db else 0.0
        print(f"Track {key}: {path}")
        print(f"   Duration:    {format_time(result.duration)} @ {result.sample_rate} Hz")
        print(f"   Integrated:  {format_db(result.metrics.lufs_integrated, 'LUFS')}")
        print(f"   Peak:        {format_db(result.metrics.peak_db)}")
        print(f"   Offset:      {format_db(attenuation)}  (gain x{result.gain:.4f})")

    return 0


if __name__ == "__main__":
    sys.exit(main())
