"""
Command line argument handling for videodupfinder.
"""

import argparse
from pathlib import Path
from typing import List, Optional, Sequence

import psutil

from . import utils
from ..video.analysis import DEFAULT_DURATION_RATIO, DEFAULT_TOLERANCE, STRATEGY_CHOICES, SearchConfig
from ..video.hashing import HASH_BITS
from ..video.search import DEFAULT_BK_TREE_CROSSOVER


class CustomHelpFormatter(argparse.RawTextHelpFormatter):
    """Custom formatter to improve the display of argument choices."""

    def _format_action_invocation(self, action):
        if not action.option_strings or action.nargs == 0:
            return super()._format_action_invocation(action)

        default = self._get_default_metavar_for_optional(action)
        args_string = self._format_args(action, default)

        if action.choices:
            args_string = '{' + ', '.join(str(c) for c in action.choices) + '}'

        return ', '.join(action.option_strings) + ' ' + args_string


class VideoArgumentParser:
    """Argument parser for the videodupfinder command."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog='videodupfinder',
            description="""videodupfinder - Near-duplicate video finder

Finds videos that show the same content even when they were resized, cropped,
letterboxed, watermarked or re-encoded. Each video is reduced to a compact
perceptual hash (cached between runs) and hashes are compared by Hamming
distance.""",
            formatter_class=CustomHelpFormatter
        )
        self._add_input_arguments()
        self._add_search_arguments()
        self._add_output_arguments()
        self._add_cache_arguments()
        self._add_misc_arguments()

    def _add_input_arguments(self):
        self.parser.add_argument(
            'directories',
            nargs='+',
            type=str,
            help='Directories to scan for video files'
        )

        input_group = self.parser.add_argument_group('Input Options')
        input_group.add_argument(
            '--with-refs',
            nargs='+',
            metavar='DIR',
            default=[],
            help='Reference directories: only report files from the scanned directories\n'
                 'that match a file from these directories'
        )
        input_group.add_argument(
            '--exclude',
            nargs='+',
            metavar='DIR',
            default=[],
            help='Directories to skip while scanning'
        )
        input_group.add_argument(
            '--recursive',
            action='store_true',
            default=True,
            help='Scan directories recursively'
        )
        input_group.add_argument(
            '--no-recursive',
            dest='recursive',
            action='store_false',
            help='Do not scan directories recursively'
        )

    def _add_search_arguments(self):
        search_group = self.parser.add_argument_group('Search Options')
        search_group.add_argument(
            '--tolerance',
            type=float,
            default=DEFAULT_TOLERANCE,
            help=f'Maximum fraction of differing hash bits, in [0, 1] (default: {DEFAULT_TOLERANCE})'
        )
        search_group.add_argument(
            '--duration-ratio',
            type=float,
            default=DEFAULT_DURATION_RATIO,
            help='Maximum relative duration difference between duplicates, in [0, 1]\n'
                 f'(default: {DEFAULT_DURATION_RATIO})'
        )
        search_group.add_argument(
            '--search',
            dest='strategy',
            type=str,
            choices=list(STRATEGY_CHOICES),
            default='auto',
            help='Search strategy. Options:\n' +
                 '  auto   - linear scan, BK-tree from --bk-tree-crossover files up\n' +
                 '  linear - vectorised comparison against every file\n' +
                 '  bktree - metric tree, prunes comparisons on sparse collections\n' +
                 '(default: auto)'
        )
        search_group.add_argument(
            '--bk-tree-crossover',
            type=int,
            default=DEFAULT_BK_TREE_CROSSOVER,
            help=f'File count from which auto search uses the BK-tree (default: {DEFAULT_BK_TREE_CROSSOVER})'
        )
        search_group.add_argument(
            '--workers',
            type=int,
            help='Number of worker threads (default: number of CPUs)'
        )
        search_group.add_argument(
            '--mode',
            type=str,
            choices=['duplicates', 'unique'],
            default='duplicates',
            help='What to report. Options:\n' +
                 '  duplicates - groups of similar videos\n' +
                 '  unique     - videos without any duplicate\n' +
                 '(default: duplicates, ignored with --with-refs)'
        )

    def _add_output_arguments(self):
        output_group = self.parser.add_argument_group('Output Options')
        output_group.add_argument(
            '--output-format',
            type=str,
            choices=['text', 'json', 'csv'],
            default='text',
            help='Output format for report. Options: text, json, csv (default: text)'
        )
        output_group.add_argument(
            '--output-file',
            type=str,
            help='Output file path (default: stdout)'
        )

    def _add_cache_arguments(self):
        cache_group = self.parser.add_argument_group('Cache Options')
        cache_group.add_argument(
            '--cache-file',
            type=str,
            help=f'Hash cache location (default: {utils.default_cache_path()})'
        )
        cache_group.add_argument(
            '--clear-cache',
            action='store_true',
            help='Clear cache before running'
        )
        cache_group.add_argument(
            '--retry-failed',
            action='store_true',
            help='Hash again files that previously failed or were too short'
        )
        cache_group.add_argument(
            '--decode-timeout',
            type=float,
            default=120.0,
            help='Seconds before a hung ffmpeg process is abandoned (default: 120)'
        )
        cache_group.add_argument(
            '--no-cropdetect',
            dest='cropdetect',
            action='store_false',
            help='Do not detect and remove letterboxing before hashing'
        )

    def _add_misc_arguments(self):
        misc_group = self.parser.add_argument_group('Miscellaneous')
        misc_group.add_argument(
            '-v', '--verbose',
            action='count',
            default=0,
            help='Increase verbosity level (-v for detailed, -vv for debug)'
        )
        misc_group.add_argument(
            '--version',
            action='version',
            version=f'videodupfinder {utils.VERSION}'
        )

    def parse_args(self, argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
        """Parse command line arguments."""
        args = self.parser.parse_args(argv)

        # Convert directories to Path objects
        args.directories = _resolve_all(args.directories)
        args.with_refs = _resolve_all(args.with_refs)
        args.exclude = _resolve_all(args.exclude)

        if args.output_file:
            args.output_file = Path(args.output_file).resolve()
        if args.cache_file:
            args.cache_file = Path(args.cache_file).expanduser().resolve()

        return args


def _resolve_all(paths: List[str]) -> List[Path]:
    return [Path(p).expanduser().resolve() for p in paths]


def resolve_workers(args: argparse.Namespace) -> int:
    """Worker count from --workers, defaulting to the CPU count."""
    if args.workers is not None:
        return args.workers
    return psutil.cpu_count() or 1


def build_search_config(args: argparse.Namespace, hash_length: int = HASH_BITS) -> SearchConfig:
    """SearchConfig from parsed arguments. Raises ConfigurationError on bad values."""
    return SearchConfig.from_tolerance(
        args.tolerance,
        hash_length=hash_length,
        duration_ratio=args.duration_ratio,
        strategy=args.strategy,
        bk_tree_crossover=args.bk_tree_crossover,
        workers=resolve_workers(args),
    )
