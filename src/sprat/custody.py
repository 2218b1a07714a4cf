"""
Incremental rebuilds: per-file staleness records and the filter deciding
which sources of a Stage need reprocessing.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from .core import StagePlan
from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from .core import LineOrigin, Stage


Signature = tuple[int, int]


def signature(path: Path) -> Signature:
    """
    Return the modification signature of @path: (st_mtime_ns, st_size).
    """
    stat = path.stat()
    return stat.st_mtime_ns, stat.st_size


class FileRecord:
    """
    What a Stage last knew about one source file.
    """
    def __init__(self,
                 path: Path,
                 signature: Signature,
                 output: Path | None = None,
                 output_m_time: int | None = None,
                 content: bytes | None = None,
                 origins: tuple[LineOrigin | None, ...] | None = None):
        self.path = path
        self.signature = signature
        self.output = output
        self.output_m_time = output_m_time
        # Only aggregating stages cache transformed content.
        self.content = content
        self.origins = origins

    def __repr__(self):
        return f'FileRecord({str(self.path)!r}, {self.signature})'


def log_step(stage: Stage,
             source: Path,
             output: Path,
             *,
             stale: bool = True,
             stale_msg: str = ''):
    """
    Log processing information for a file according to its staleness.
    """
    msg = f'{source} ⇒ {output}'
    if stale:
        print_with_style(f'[{stage.name}] {stale_msg}...\n{msg}')
    else:
        print_with_style(f'[{stage.name}] Skipped', msg, style='yellow')


class Custodian:
    """
    Staleness tracking for a per-file Stage, where each source maps to one
    output. A source is stale when its output is missing, older than the
    source or than any of the Stage's support files, or was touched since this
    Custodian last wrote it. Any support file appearing, disappearing or
    changing since the last run makes every source stale.
    """
    def __init__(self, stage: Stage):
        self.stage = stage
        self.records: dict[Path, FileRecord] = {}
        # None until the first committed run.
        self.support: dict[Path, Signature] | None = None

    def reset(self):
        self.records.clear()
        self.support = None

    def refresh_needed(self,
                       source: Path,
                       output: Path,
                       newest_support: int = 0,
                       support_changed: bool = False):
        """
        Determines whether @source needs to be reprocessed into @output.
        Fails open: any problem reading the output marks the source stale.

        :return: Whether the file should be reprocessed and a message
            explaining why or why not.
        """
        try:
            s_time = source.stat().st_mtime_ns
        except OSError as e:
            return True, f'Unreadable source ({e})'
        try:
            o_time = output.stat().st_mtime_ns
        except FileNotFoundError:
            return True, f'Missing output ({output})'
        except OSError as e:
            return True, f'Unreadable output ({e})'

        if s_time > o_time:
            return True, f'Stale output ({output})'
        record = self.records.get(source)
        if record and record.output == output and record.output_m_time not in (None, o_time):
            return True, f'Output changed since last run ({output})'
        if support_changed:
            return True, 'Support files changed'
        if newest_support > o_time:
            return True, f'Stale support files ({output})'
        return False, 'Up to date'

    def is_stale(self, source: Path):
        support = self._support_signatures()
        return self.refresh_needed(
            source,
            self.stage.output_path(source),
            max((s[0] for s in support.values()), default=0),
            self.support_changed(support),
        )[0]

    def _support_signatures(self):
        sigs: dict[Path, Signature] = {}
        for path in self.stage.find_support():
            try:
                sigs[path] = signature(path)
            except OSError:
                continue
        return sigs

    def support_changed(self, support: dict[Path, Signature]):
        """
        Whether @support differs from the support files of the last run.
        Before any run, only timestamps can tell.
        """
        return self.support is not None and support != self.support

    def plan(self) -> StagePlan:
        """
        Transform every stale source of the Stage and schedule the removal of
        outputs whose sources were deleted.
        """
        stage = self.stage
        sources = stage.find_sources()
        support = self._support_signatures()
        newest_support = max((s[0] for s in support.values()), default=0)
        support_changed = self.support_changed(support)

        writes: list[tuple[Path | None, Path, bytes]] = []
        current: list[FileRecord] = []
        for source in sources:
            output = stage.output_path(source)
            stale, msg = self.refresh_needed(source, output, newest_support, support_changed)
            if stale:
                log_step(stage, source, output, stale_msg=msg)
                asset = stage.transform(source)
                writes.append((source, output, asset.data))
            else:
                log_step(stage, source, output, stale=False)
            try:
                current.append(FileRecord(source, signature(source), output))
            except OSError:
                # Deleted while planning; the next run removes its output.
                continue

        present = {r.path for r in current}
        deleted = [r for p, r in self.records.items() if p not in present]
        removals = [r.output for r in deleted if r.output and r.output not in {w[1] for w in writes}]
        for record in deleted:
            print_with_style(f'[{stage.name}] Removed source {record.path}', style='yellow')

        def on_commit():
            self.records = {}
            self.support = support
            for record in current:
                try:
                    record.output_m_time = record.output.stat().st_mtime_ns if record.output else None
                except OSError:
                    record.output_m_time = None
                self.records[record.path] = record

        return StagePlan(stage, writes, removals, on_commit)
