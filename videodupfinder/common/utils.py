"""
Common utilities for video duplicate finding.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set

# Add custom VERBOSE level between INFO and DEBUG
VERBOSE = 15  # Between INFO (20) and DEBUG (10)
logging.addLevelName(VERBOSE, "VERBOSE")

def setup_logging(verbose_level: int = 0) -> logging.Logger:
    """Set up logging with configurable verbosity."""
    # Set up basic logging format
    logging.basicConfig(
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Create logger
    logger = logging.getLogger('videodupfinder')

    # Set log level based on verbosity
    if verbose_level == 0:
        log_level = logging.INFO
    elif verbose_level == 1:
        log_level = VERBOSE
    else:
        log_level = logging.DEBUG

    logger.setLevel(log_level)

    if verbose_level >= 1:
        logger.log(VERBOSE, "Verbose logging enabled")
        if verbose_level >= 2:
            logger.debug("Debug logging enabled")

    return logger

def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.2f} PB"

def is_ancestor_of(ancestor: Path, candidate: Path) -> bool:
    """True if candidate is ancestor itself or lies below it."""
    return ancestor == candidate or ancestor in candidate.parents

def find_files(directories: List[Path],
               extensions: Set[str],
               recursive: bool = True,
               excluded: Optional[Iterable[Path]] = None,
               logger: logging.Logger = None) -> List[Path]:
    """Find files with specified extensions in given directories.

    Paths below any of the excluded directories are skipped. The result is
    sorted and free of duplicates so that later steps are deterministic.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    excluded = [Path(p).resolve() for p in (excluded or [])]
    found_files = set()

    def add_file(file_path: Path):
        if not (file_path.is_file() and file_path.suffix.lower() in extensions):
            return
        resolved = file_path.resolve()
        if any(is_ancestor_of(excl, resolved) for excl in excluded):
            return
        found_files.add(resolved)

    for directory in directories:
        if not directory.exists():
            logger.warning(f"Directory does not exist: {directory}")
            continue

        # A file given on the command line stands for itself
        if directory.is_file():
            add_file(directory)
            continue

        logger.info(f"Scanning directory: {directory}")

        # Process all files in the directory
        if recursive:
            file_iterator = directory.rglob('*')
        else:
            file_iterator = directory.glob('*')

        for file_path in file_iterator:
            add_file(file_path)

    logger.info(f"Found {len(found_files)} files")
    return sorted(found_files)

def default_cache_path() -> Path:
    """Per-user location of the persistent hash cache."""
    return Path.home() / ".cache" / "videodupfinder" / "hash_cache.json"

# Constants
VERSION = "1.0.0"

VIDEO_EXTENSIONS = {
    '.mp4', '.mkv', '.avi', '.mov', '.wmv', '.flv', '.webm',
    '.m4v', '.mpg', '.mpeg', '.3gp', '.3g2', '.mxf', '.ts',
    '.m2ts', '.vob', '.ogv', '.mts', '.m2v', '.divx', '.rmvb', '.rm'
}
