"""
Main entry point for video duplicate finding.
"""

import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .common.actions import make_reporter, write_report
from .common.cache import HashCache, hashed_videos
from .common.cli import VideoArgumentParser, build_search_config
from .common.errors import ConfigurationError
from .common.models import FileResult
from .common.utils import VIDEO_EXTENSIONS, find_files, setup_logging
from .video import check_ffmpeg
from .video.analysis import DuplicateResolver
from .video.decoder import FfmpegDecoder

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2


def _collect_inputs(args, logger) -> Tuple[List[Path], List[Path]]:
    """Target and reference video files. Raises ConfigurationError if they overlap."""
    targets = find_files(args.directories, VIDEO_EXTENSIONS, args.recursive, args.exclude, logger)
    references = []
    if args.with_refs:
        references = find_files(args.with_refs, VIDEO_EXTENSIONS, args.recursive, args.exclude, logger)
        overlap = set(targets) & set(references)
        if overlap:
            raise ConfigurationError(
                f"{len(overlap)} file(s) are both scanned and used as references, "
                f"e.g. {min(overlap)}"
            )
    return targets, references


def _split_results(results: List[FileResult], references: List[Path]):
    reference_set = set(references)
    targets = [r for r in results if r.path not in reference_set]
    refs = [r for r in results if r.path in reference_set]
    return targets, refs


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the script."""
    # Parse command line arguments
    parser = VideoArgumentParser()
    args = parser.parse_args(argv)

    # Set up logging
    logger = setup_logging(args.verbose)

    try:
        config = build_search_config(args)
        targets, references = _collect_inputs(args, logger)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIGURATION

    if not targets:
        logger.error("No video files found in the specified directories")
        return EXIT_FAILURE

    # Check dependencies
    if not check_ffmpeg():
        logger.error("ffmpeg and ffprobe are required but not found in the system PATH.")
        logger.error("Please install them and make sure they are available in your PATH.")
        return EXIT_FAILURE

    logger.info(f"Searching with max distance {config.max_distance} bits, "
                f"duration ratio {config.duration_ratio}")

    decoder = FfmpegDecoder(cropdetect=args.cropdetect, timeout=args.decode_timeout)
    with HashCache(args.cache_file, decoder=decoder, retry_failed=args.retry_failed) as cache:
        if args.clear_cache:
            cache.clear()
        results = cache.bulk_populate(targets + references, workers=config.workers,
                                      progress=sys.stderr.isatty())

    target_results, reference_results = _split_results(results, references)
    failures = [r for r in results if not r.ok]

    resolver = DuplicateResolver(config)
    try:
        output = resolver.search(
            hashed_videos(target_results),
            hashed_videos(reference_results) if args.with_refs else None,
            failures,
        )
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIGURATION

    reporter = make_reporter(args.output_format, args.output_file)
    report_path = write_report(output, reporter, args.mode)
    if report_path:
        print(f"\nReport saved to: {report_path}")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
