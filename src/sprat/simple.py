"""
Simple Steps and Bundlers, and a base class for text-processing Steps.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

from .core import Asset, Bundler, Step
from .sourcemaps import LineMapBuilder, comment, count_lines, map_chunk_lines, source_name

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from .core import LineOrigin


class RawCopyStep(Step):
    """
    A simple Step which passes files through without renaming or changes.
    """
    kind = 'raw-copy'

    def __call__(self, asset: Asset):
        return asset


class BaseStandardStep(Step):
    """
    A base class providing helper behaviors for Steps working on text.
    """
    encoding = 'utf-8'

    def emit_text(self, asset: Asset, text: str, origins: Sequence[LineOrigin | None] | None = None):
        return self.emit(asset, text.encode(self.encoding), origins)


class ConcatBundler(Bundler):
    """
    A Bundler joining chunks in order, one newline-terminated chunk after the
    other. With @sourcemap set to 'css' or 'js', a source map is embedded as
    a trailing comment of that syntax, mapping each output line to its source.
    """
    encoding = 'utf-8'

    def __init__(self, name: str, sourcemap: t.Literal['css', 'js'] | None = None):
        super().__init__(name)
        self.sourcemap = sourcemap

    def map_chunk(self, builder: LineMapBuilder, chunk: Asset, lines: int):
        """
        Map the @lines lines of @chunk to their origins when the chunk knows
        them, or else to the same lines of its source file.
        """
        out_dir = self.output_path.parent
        if chunk.origins is None:
            index = builder.add_source(source_name(chunk.source, out_dir))
            map_chunk_lines(builder, index, lines)
            return
        origins = list(chunk.origins[:lines])
        origins += [None] * (lines - len(origins))
        for origin in origins:
            if origin is None:
                builder.add_unmapped()
            else:
                path, line = origin
                builder.add_line(builder.source_index(source_name(Path(path), out_dir)), line)

    def __call__(self, chunks: Sequence[Asset]):
        builder = LineMapBuilder(self.name) if self.sourcemap else None
        parts: list[str] = []
        for chunk in chunks:
            text = chunk.text(self.encoding).rstrip('\n')
            if not text:
                continue
            parts.append(text + '\n')
            if builder:
                self.map_chunk(builder, chunk, count_lines(text))

        if builder and self.sourcemap:
            parts.append(comment(builder.to_data_url(), self.sourcemap) + '\n')
        return ''.join(parts).encode(self.encoding)
