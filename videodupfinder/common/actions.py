"""
Reporting of search results.

The resolver knows nothing about presentation; reporters receive its
output piece by piece through ``report_groups``, ``report_unique``,
``report_matches`` and ``report_errors``, then write everything on
``finish``.
"""

import csv
import io
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import colorama
from colorama import Fore, Style

from . import utils
from .models import CrossMatch, DuplicateGroup, FileResult, SearchOutput

logger = logging.getLogger(__name__)


class Reporter:
    """Collects results and writes them to a file or stdout."""

    def __init__(self, output_file: Optional[Path] = None):
        self.output_file = Path(output_file) if output_file else None

    def report_groups(self, groups: List[DuplicateGroup]) -> None:
        raise NotImplementedError

    def report_unique(self, paths: List[Path]) -> None:
        raise NotImplementedError

    def report_matches(self, matches: List[CrossMatch]) -> None:
        raise NotImplementedError

    def report_errors(self, failures: List[FileResult]) -> None:
        raise NotImplementedError

    def render(self) -> str:
        raise NotImplementedError

    def finish(self) -> Optional[Path]:
        """Write the report. Returns the report path, or None for stdout."""
        content = self.render()
        if self.output_file:
            with open(self.output_file, 'w', encoding='utf-8', newline='') as f:
                f.write(content)
            logger.debug(f"Report saved to: {self.output_file.absolute()}")
            return self.output_file.absolute()
        sys.stdout.write(content)
        return None


def _file_size(path: Path) -> str:
    try:
        return utils.format_size(path.stat().st_size)
    except OSError:
        return "unknown size"


class TextReporter(Reporter):
    """Human-readable report, coloured when printed to a terminal."""

    def __init__(self, output_file: Optional[Path] = None, color: Optional[bool] = None):
        super().__init__(output_file)
        if color is None:
            color = self.output_file is None and sys.stdout.isatty()
        self.color = color
        if self.color:
            colorama.just_fix_windows_console()
        self.lines: List[str] = []

    def _paint(self, text: str, color: str) -> str:
        if not self.color:
            return text
        return f"{color}{text}{Style.RESET_ALL}"

    def report_groups(self, groups: List[DuplicateGroup]) -> None:
        if not groups:
            self.lines.append("No duplicates found.")
            return

        total_duplicates = sum(len(group) - 1 for group in groups)
        self.lines.append(f"Found {len(groups)} duplicate groups ({total_duplicates} duplicate files)")

        for i, group in enumerate(groups):
            self.lines.append("")
            self.lines.append(self._paint(f"=== Group {i+1}/{len(groups)} ===", Style.BRIGHT))
            self.lines.append(self._paint("[KEEP] Representative:", Fore.GREEN))
            self.lines.append(f"* {group.representative}")
            self.lines.append(f"  Size: {_file_size(group.representative)}")
            self.lines.append(self._paint("[DUPLICATES]", Fore.YELLOW))
            for j, (path, dist) in enumerate(group.members[1:]):
                self.lines.append(f"{j+1}. {path}")
                self.lines.append(f"   Size: {_file_size(path)}, distance: {dist} bits")

    def report_unique(self, paths: List[Path]) -> None:
        self.lines.append(f"Found {len(paths)} files without duplicates")
        for path in paths:
            self.lines.append(f"- {path}")

    def report_matches(self, matches: List[CrossMatch]) -> None:
        if not matches:
            self.lines.append("No file matched the reference set.")
            return

        self.lines.append(f"Found {len(matches)} files matching the reference set")
        for match in matches:
            self.lines.append("")
            self.lines.append(self._paint(str(match.target), Style.BRIGHT))
            for path, dist in match.references:
                self.lines.append(f"  = {path} (distance: {dist} bits)")

    def report_errors(self, failures: List[FileResult]) -> None:
        if not failures:
            return
        self.lines.append("")
        self.lines.append(self._paint(f"=== {len(failures)} files could not be processed ===", Fore.RED))
        for failure in failures:
            self.lines.append(f"- {failure.path}: {failure.describe()}")

    def render(self) -> str:
        return '\n'.join(self.lines) + '\n'


class JsonReporter(Reporter):
    """Machine-readable report mirroring SearchOutput.to_dict()."""

    def __init__(self, output_file: Optional[Path] = None):
        super().__init__(output_file)
        self.data: Dict = {'timestamp': datetime.now().isoformat()}

    def report_groups(self, groups: List[DuplicateGroup]) -> None:
        self.data['total_groups'] = len(groups)
        self.data['total_duplicates'] = sum(len(group) - 1 for group in groups)
        self.data['duplicate_groups'] = [group.to_dict() for group in groups]

    def report_unique(self, paths: List[Path]) -> None:
        self.data['unique_files'] = [str(p) for p in paths]

    def report_matches(self, matches: List[CrossMatch]) -> None:
        self.data['reference_matches'] = [m.to_dict() for m in matches]

    def report_errors(self, failures: List[FileResult]) -> None:
        self.data['failures'] = [f.to_dict() for f in failures]

    def render(self) -> str:
        return json.dumps(self.data, indent=2) + '\n'


class CsvReporter(Reporter):
    """One row per reported file."""

    FIELDS = ['kind', 'group_id', 'path', 'related_path', 'distance', 'reason']

    def __init__(self, output_file: Optional[Path] = None):
        super().__init__(output_file)
        self.rows: List[Dict] = []

    def report_groups(self, groups: List[DuplicateGroup]) -> None:
        for i, group in enumerate(groups):
            for path, dist in group.members:
                self.rows.append({
                    'kind': 'duplicate',
                    'group_id': i,
                    'path': str(path),
                    'related_path': str(group.representative),
                    'distance': dist,
                })

    def report_unique(self, paths: List[Path]) -> None:
        for path in paths:
            self.rows.append({'kind': 'unique', 'path': str(path)})

    def report_matches(self, matches: List[CrossMatch]) -> None:
        for i, match in enumerate(matches):
            for path, dist in match.references:
                self.rows.append({
                    'kind': 'match',
                    'group_id': i,
                    'path': str(match.target),
                    'related_path': str(path),
                    'distance': dist,
                })

    def report_errors(self, failures: List[FileResult]) -> None:
        for failure in failures:
            self.rows.append({'kind': 'error', 'path': str(failure.path), 'reason': failure.describe()})

    def render(self) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=self.FIELDS, lineterminator='\n')
        writer.writeheader()
        writer.writerows(self.rows)
        return buffer.getvalue()


REPORTERS = {
    'text': TextReporter,
    'json': JsonReporter,
    'csv': CsvReporter,
}


def make_reporter(format_type: str = 'text', output_file: Optional[Path] = None) -> Reporter:
    """Instantiate the reporter for an --output-format value."""
    try:
        reporter_cls = REPORTERS[format_type]
    except KeyError:
        raise ValueError(f"Unknown output format: {format_type}")
    return reporter_cls(output_file)


def write_report(output: SearchOutput, reporter: Reporter, mode: str = 'duplicates') -> Optional[Path]:
    """Feed a SearchOutput to a reporter according to the search mode."""
    if output.with_references:
        reporter.report_matches(output.matches)
    elif mode == 'unique':
        reporter.report_unique(output.unique)
    else:
        reporter.report_groups(output.groups)

    if output.failures:
        reporter.report_errors(output.failures)

    return reporter.finish()
