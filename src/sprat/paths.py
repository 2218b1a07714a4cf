"""
Glob-based path Matchers.
"""
from __future__ import annotations

import abc
import functools
import re
import typing as t
from pathlib import Path, PurePath

if t.TYPE_CHECKING:
    from collections.abc import Iterable


def _translate_part(pattern: str) -> str:
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith('**/', i):
            out.append('(?:.*/)?')
            i += 3
        elif pattern.startswith('**', i):
            out.append('.*')
            i += 2
        elif pattern[i] == '*':
            out.append('[^/]*')
            i += 1
        elif pattern[i] == '?':
            out.append('[^/]')
            i += 1
        elif pattern[i] == '[' and (end := pattern.find(']', i + 2)) != -1:
            body = pattern[i + 1:end]
            if body.startswith('!'):
                body = '^' + body[1:]
            out.append('[' + body.replace('\\', '\\\\') + ']')
            i = end + 1
        elif pattern[i] == '{' and (end := pattern.find('}', i)) != -1:
            alternatives = pattern[i + 1:end].split(',')
            out.append('(?:' + '|'.join(_translate_part(a) for a in alternatives) + ')')
            i = end + 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return ''.join(out)


@functools.lru_cache(maxsize=256)
def translate_glob(pattern: str) -> re.Pattern[str]:
    """
    Compile a glob into a regex matching relative POSIX paths. `*` and `?`
    never cross a `/`, `**/` matches zero or more directories, and `{a,b}`
    matches either alternative.
    """
    return re.compile(f'(?s:{_translate_part(pattern)})\\Z')


class Matcher(abc.ABC):
    """
    Abstract base class for path Matchers, called with a path relative to a
    stage's source directory. Provides pre-baked ability to combine Matchers
    with |, & and ~.
    """
    @abc.abstractmethod
    def __call__(self, path: PurePath) -> bool:
        ...

    def __or__(self, other: Matcher):
        return _OrMatcher(self, other)

    def __and__(self, other: Matcher):
        return _AndMatcher(self, other)

    def __invert__(self):
        return _NotMatcher(self)


class _OrMatcher(Matcher):
    def __init__(self, left: Matcher, right: Matcher):
        self.left = left
        self.right = right

    def __call__(self, path: PurePath):
        return self.left(path) or self.right(path)


class _AndMatcher(Matcher):
    def __init__(self, left: Matcher, right: Matcher):
        self.left = left
        self.right = right

    def __call__(self, path: PurePath):
        return self.left(path) and self.right(path)


class _NotMatcher(Matcher):
    def __init__(self, inner: Matcher):
        self.inner = inner

    def __call__(self, path: PurePath):
        return not self.inner(path)


class GlobMatcher(Matcher):
    """
    Matcher accepting paths that match any of @patterns.
    """
    def __init__(self, patterns: str | Iterable[str]):
        if isinstance(patterns, str):
            patterns = [patterns]
        self.patterns = list(patterns)
        self.regexes = [translate_glob(p) for p in self.patterns]

    def __repr__(self):
        return f'GlobMatcher({self.patterns!r})'

    def __call__(self, path: PurePath):
        posix = path.as_posix()
        return any(regex.match(posix) for regex in self.regexes)


def find_files(path: Path):
    """
    Recursively yield the files below @path, excluding the directories
    themselves. A missing directory yields nothing.
    """
    if not path.is_dir():
        return
    for candidate in sorted(path.iterdir()):
        if candidate.is_dir():
            yield from find_files(candidate)
        else:
            yield candidate
