"""
The Aggregation Cache for Stages that combine many sources into one output.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from .core import Asset, StagePlan, guess_media_type
from .custody import FileRecord, Signature, log_step, signature
from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from .core import Stage


class AggregationCache:
    """
    Remembers the transformed content of every source of an aggregating Stage,
    so that a change to one source only re-transforms that source while the
    combined output still covers all of them.

    Staleness is judged against the signature recorded when a source was last
    transformed, never against the destination. A change to any support file
    invalidates every entry.
    """
    def __init__(self, stage: Stage):
        if not stage.bundler:
            raise TypeError(f'Stage {stage.name!r} has no bundler')
        self.stage = stage
        self.records: dict[Path, FileRecord] = {}
        self.support: dict[Path, Signature] = {}

    def reset(self):
        self.records.clear()
        self.support.clear()

    def refresh_needed(self, source: Path, sig: Signature):
        """
        :return: Whether @source must be re-transformed and a message
            explaining why or why not.
        """
        record = self.records.get(source)
        if record is None or record.content is None:
            return True, 'Not yet seen'
        if record.signature != sig:
            return True, 'Changed since last run'
        return False, 'Up to date'

    def is_stale(self, source: Path):
        try:
            return self.refresh_needed(source, signature(source))[0]
        except OSError:
            return True

    def _support_signatures(self):
        sigs: dict[Path, Signature] = {}
        for path in self.stage.find_support():
            try:
                sigs[path] = signature(path)
            except OSError:
                continue
        return sigs

    def plan(self) -> StagePlan:
        """
        Re-transform stale sources, reuse cached content for the rest, drop
        entries of deleted sources and combine everything in path order.
        Cache updates are staged and only applied once the plan commits.
        """
        stage = self.stage
        assert stage.bundler
        output = stage.bundler.output_path

        support = self._support_signatures()
        invalidated = support != self.support

        staged: dict[Path, FileRecord] = {}
        changed = invalidated or not output.exists()
        for source in stage.find_sources():
            try:
                sig = signature(source)
            except OSError:
                # Deleted while planning; treated as absent.
                continue
            stale, msg = self.refresh_needed(source, sig)
            if invalidated and not stale:
                stale, msg = True, 'Support files changed'
            if stale:
                log_step(stage, source, output, stale_msg=msg)
                asset = stage.transform(source)
                staged[source] = FileRecord(source, sig, output, content=asset.data, origins=asset.origins)
                changed = True
            else:
                log_step(stage, source, output, stale=False)
                staged[source] = self.records[source]

        for path in self.records.keys() - staged.keys():
            print_with_style(f'[{stage.name}] Removed source {path}', style='yellow')
            changed = True

        def on_commit():
            self.records = staged
            self.support = support

        if not changed:
            return StagePlan(stage, on_commit=on_commit)

        chunks = [
            Asset(
                path, name, t.cast(bytes, staged[path].content), guess_media_type(name),
                staged[path].origins,
            )
            for path in sorted(staged)
            if (name := stage.relative(path))
        ]
        return StagePlan(stage, [(None, output, stage.combine(chunks))], [], on_commit)

    def combined_order(self):
        """
        Return the cached source paths in the order they are combined.
        """
        return sorted(self.records)
