"""
Minimal source map (revision 3) generation and reading for bundled outputs.
"""
from __future__ import annotations

import base64
import difflib
import json
import os
import typing as t

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path
    from .core import LineOrigin


_B64 = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/'
_B64_VALUES = {c: i for i, c in enumerate(_B64)}


def encode_vlq(value: int) -> str:
    """
    Encode one integer as a base64 VLQ, as used by source map mappings.
    """
    vlq = (-value << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = vlq & 0b11111
        vlq >>= 5
        if vlq:
            digit |= 0b100000
        out.append(_B64[digit])
        if not vlq:
            return ''.join(out)


def decode_vlq(segment: str) -> list[int]:
    """
    Decode all base64 VLQ values of one source map segment.
    """
    values = []
    value = shift = 0
    for char in segment:
        digit = _B64_VALUES[char]
        value += (digit & 0b11111) << shift
        if digit & 0b100000:
            shift += 5
            continue
        values.append(-(value >> 1) if value & 1 else value >> 1)
        value = shift = 0
    return values


class LineMapBuilder:
    """
    Builds a source map in which every generated line maps, at column 0, to a
    line of one of the sources. Lines added with `add_unmapped()` have no
    mapping.
    """
    def __init__(self, file: str):
        self.file = file
        self.sources: list[str] = []
        self.contents: list[str | None] = []
        self._lines: list[str] = []
        self._prev_source = 0
        self._prev_line = 0

    def add_source(self, name: str, content: str | None = None):
        self.sources.append(name)
        self.contents.append(content)
        return len(self.sources) - 1

    def source_index(self, name: str):
        """
        Return the index of source @name, adding it if it is new.
        """
        if name in self.sources:
            return self.sources.index(name)
        return self.add_source(name)

    def add_unmapped(self, count: int = 1):
        self._lines.extend([''] * count)

    def add_line(self, source: int, line: int):
        segment = ''.join([
            encode_vlq(0),
            encode_vlq(source - self._prev_source),
            encode_vlq(line - self._prev_line),
            encode_vlq(0),
        ])
        self._prev_source = source
        self._prev_line = line
        self._lines.append(segment)

    def to_dict(self):
        return {
            'version': 3,
            'file': self.file,
            'sources': self.sources,
            'sourcesContent': self.contents,
            'names': [],
            'mappings': ';'.join(self._lines),
        }

    def to_data_url(self):
        encoded = base64.b64encode(json.dumps(self.to_dict()).encode('utf-8')).decode('ascii')
        return f'data:application/json;charset=utf-8;base64,{encoded}'


def source_name(source: Path, output_dir: Path):
    """
    Name @source relative to the directory its bundle is written to.
    """
    return os.path.relpath(source, output_dir).replace(os.sep, '/')


def map_chunk_lines(builder: LineMapBuilder, source: int, chunk_lines: int):
    """
    Map @chunk_lines generated lines one-to-one onto the lines of @source.
    """
    for i in range(chunk_lines):
        builder.add_line(source, i)


def comment(url: str, style: t.Literal['css', 'js']):
    if style == 'css':
        return f'/*# sourceMappingURL={url} */'
    return f'//# sourceMappingURL={url}'


def count_lines(text: str):
    if not text:
        return 0
    return text.count('\n') + (0 if text.endswith('\n') else 1)


def line_origins(source_map: dict[str, t.Any], base_dir: str) -> list[LineOrigin | None]:
    """
    Reduce a source map to the origin of each generated line: the source
    and line of its first mapped segment. Sources are resolved against
    @base_dir, the directory the map was written for.
    """
    root = source_map.get('sourceRoot') or ''
    sources = [os.path.normpath(os.path.join(base_dir, root, s)) for s in source_map['sources']]
    origins: list[LineOrigin | None] = []
    source = line = 0
    for generated in source_map['mappings'].split(';'):
        origin = None
        for segment in generated.split(','):
            fields = decode_vlq(segment) if segment else []
            if len(fields) < 4:
                continue
            source += fields[1]
            line += fields[2]
            if origin is None:
                origin = (sources[source], line)
        origins.append(origin)
    return origins


def realign(origins: Sequence[LineOrigin | None], before: str, after: str) -> list[LineOrigin | None]:
    """
    Carry line @origins of text @before over to @after, a reformatted version
    of it. Unchanged lines keep their origin; inserted lines take the origin of
    the closest kept line above them.
    """
    old_lines = before.splitlines()
    new_lines = after.splitlines()
    aligned: list[LineOrigin | None] = [None] * len(new_lines)
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    for i, j, size in matcher.get_matching_blocks():
        for k in range(size):
            if i + k < len(origins):
                aligned[j + k] = origins[i + k]
    previous = None
    for j, origin in enumerate(aligned):
        if origin is None:
            aligned[j] = previous
        else:
            previous = origin
    return aligned
