"""
Core classes and types for the sprat build pipeline.
"""
from __future__ import annotations

import abc
import contextlib
import fnmatch
import inspect
import mimetypes
import os
import shutil
import tempfile
import typing as t
from pathlib import Path, PurePosixPath

from .dependencies import Dependency
from .paths import GlobMatcher, Matcher, find_files

if t.TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence, Set


StepKind = t.Literal[
    'template-render',
    'style-compile',
    'script-bundle',
    'image-optimize',
    'sprite-build',
    'raw-copy',
]
DEFAULT_MEDIA_TYPE = 'application/octet-stream'
# (source file, zero-based line)
LineOrigin = tuple[str, int]

_mime = mimetypes.MimeTypes()
_mime.add_type('text/x-scss', '.scss')
_mime.add_type('text/x-sass', '.sass')
_mime.add_type('font/woff2', '.woff2')
_mime.add_type('image/svg+xml', '.svg')


def guess_media_type(path: PurePosixPath | Path) -> str:
    return _mime.guess_type(path.name)[0] or DEFAULT_MEDIA_TYPE


def media_type_matches(media_type: str, patterns: Iterable[str]):
    return any(fnmatch.fnmatchcase(media_type, p) for p in patterns)


def write_atomic(path: Path, data: bytes):
    """
    Write @data to @path through a temporary sibling file, so readers only
    ever see the previous or the complete new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as file:
            file.write(data)
        os.chmod(temp, 0o644)
        os.replace(temp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(temp)
        raise


def rm_children(path: Path):
    if not path.exists():
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


class Asset(t.NamedTuple):
    """
    A unit of content flowing through a Stage's Steps. @origins optionally
    names, for each line of @data, the file and zero-based line it was
    generated from.
    """
    source: Path
    name: PurePosixPath
    data: bytes
    media_type: str
    origins: tuple[LineOrigin | None, ...] | None = None

    def text(self, encoding: str = 'utf-8'):
        return self.data.decode(encoding)


class TransformError(Exception):
    """
    A single source file failed its stage's transform, or the stage's outputs
    could not be written.
    """
    def __init__(self, stage: str, path: Path | None, message: str):
        self.stage = stage
        self.path = path
        self.message = message
        super().__init__(f'{stage}: {path}: {message}' if path else f'{stage}: {message}')


class StepUnavailableException(Exception):
    """
    Exception raised when a step to be used is unavailable due to missing
    dependencies.
    """
    def __init__(self, step: Step, *args: t.Any):
        self.step = step
        super().__init__(*args)


class Step(abc.ABC):
    """
    Abstract base class for Steps, the tagged per-file transformations a Stage
    applies in order. @accepts lists the media type patterns a Step can
    process, @produces the media type it emits (None means unchanged).
    """
    kind: t.ClassVar[StepKind]
    accepts: t.ClassVar[tuple[str, ...]] = ('*/*',)
    produces: t.ClassVar[str | None] = None
    stage: Stage
    _step_registry: list[t.Type[Step]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all currently known concrete Steps.
        """
        return [s for s in cls._step_registry if not inspect.isabstract(s)]

    @classmethod
    def get_available_steps(cls):
        """
        Return a list of all currently known Steps whose requirements are met.
        """
        return [s for s in cls.get_all_steps() if s.is_available()]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed, making it
        available for use.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def __repr__(self):
        return f'{self.__class__.__name__}()'

    def bind(self, stage: Stage):
        """
        Bind this Step to a Stage.
        """
        self.stage = stage

    def output_type(self, media_type: str):
        return self.produces or media_type

    def rename(self, name: PurePosixPath) -> PurePosixPath:
        """
        Overridable method computing the output name of a file this Step
        processes, relative to the destination directory.
        """
        return name

    def emit(self, asset: Asset, data: bytes, origins: Sequence[LineOrigin | None] | None = None) -> Asset:
        """
        Derive this Step's resulting Asset from its input and new content.
        Line origins are dropped unless @origins describes the new content.
        """
        return asset._replace(
            name=self.rename(asset.name),
            data=data,
            media_type=self.output_type(asset.media_type),
            origins=tuple(origins) if origins is not None else None,
        )

    @abc.abstractmethod
    def __call__(self, asset: Asset) -> Asset:
        ...


class Bundler(abc.ABC):
    """
    Abstract base class for combining the cached chunks of an aggregating
    Stage into one output file named @name.
    """
    accepts: t.ClassVar[tuple[str, ...]] = ('*/*',)
    stage: Stage

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f'{self.__class__.__name__}({self.name!r})'

    def bind(self, stage: Stage):
        self.stage = stage

    @property
    def output_path(self):
        return self.stage.dest_dir / self.name

    @abc.abstractmethod
    def __call__(self, chunks: Sequence[Asset]) -> bytes:
        ...


class Stage:
    """
    A named unit of the pipeline reading the files below @source_dir that
    match @sources (and not @exclude), applying @steps, and writing results to
    @dest_dir. With a @bundler, all results are combined into a single output.
    @watch adds support files (partials, layouts) whose changes invalidate the
    stage without producing outputs of their own.
    """
    def __init__(self,
                 name: str,
                 source_dir: Path,
                 dest_dir: Path,
                 sources: str | Sequence[str],
                 steps: Sequence[Step] = (),
                 *,
                 exclude: str | Sequence[str] = (),
                 watch: str | Sequence[str] = (),
                 after: Sequence[str] = (),
                 bundler: Bundler | None = None):
        self.name = name
        self.source_dir = Path(source_dir).absolute()
        self.dest_dir = Path(dest_dir).absolute()
        self.steps = tuple(steps)
        self.after = tuple(after)
        self.bundler = bundler

        self.matcher: Matcher = GlobMatcher(sources)
        if exclude:
            self.matcher = self.matcher & ~GlobMatcher(exclude)
        self.watch_matcher: Matcher = self.matcher
        if watch:
            self.watch_matcher = GlobMatcher(watch) | self.matcher

        self._check_contracts()

    def __repr__(self):
        return f'Stage({self.name!r})'

    def _check_contracts(self):
        chain: list[tuple[str, tuple[str, ...], str | None]]
        chain = [(s.kind, s.accepts, s.produces) for s in self.steps]
        if self.bundler:
            chain.append((repr(self.bundler), self.bundler.accepts, None))
        for (p_label, _, produced), (label, accepts, _) in zip(chain, chain[1:]):
            if produced and not media_type_matches(produced, accepts):
                raise ValueError(
                    f'Stage {self.name!r}: {label} cannot consume {produced} '
                    f'produced by {p_label}'
                )

    @property
    def aggregating(self):
        return self.bundler is not None

    def bind(self):
        """
        Bind this Stage's Steps and Bundler, checking their availability.
        """
        for step in self.steps:
            if not step.is_available():
                raise StepUnavailableException(step)
            step.bind(self)
        if self.bundler:
            self.bundler.bind(self)

    def relative(self, path: Path) -> PurePosixPath | None:
        path = Path(path).absolute()
        if not path.is_relative_to(self.source_dir):
            return None
        return PurePosixPath(path.relative_to(self.source_dir).as_posix())

    def find_sources(self) -> list[Path]:
        """
        Return the current source files of this Stage, sorted by path.
        """
        return [
            p for p in find_files(self.source_dir)
            if self.matcher(PurePosixPath(p.relative_to(self.source_dir).as_posix()))
        ]

    def find_support(self) -> list[Path]:
        """
        Return watched files that are not sources themselves.
        """
        if self.watch_matcher is self.matcher:
            return []
        support = []
        for p in find_files(self.source_dir):
            rel = PurePosixPath(p.relative_to(self.source_dir).as_posix())
            if self.watch_matcher(rel) and not self.matcher(rel):
                support.append(p)
        return support

    def watches(self, path: Path):
        """
        Whether a change to @path should re-run this Stage.
        """
        rel = self.relative(path)
        return rel is not None and self.watch_matcher(rel)

    def output_path(self, path: Path) -> Path:
        """
        Compute the output path of a source file of a per-file Stage.
        """
        name = self.relative(path) or PurePosixPath(path.name)
        for step in self.steps:
            name = step.rename(name)
        return self.dest_dir / name

    def transform(self, path: Path) -> Asset:
        """
        Run one source file through every Step, wrapping any failure in a
        TransformError naming this Stage and the file.
        """
        try:
            data = path.read_bytes()
        except OSError as e:
            raise TransformError(self.name, path, f'Could not read source: {e}') from e
        name = self.relative(path) or PurePosixPath(path.name)
        asset = Asset(path, name, data, guess_media_type(name))

        for step in self.steps:
            if not media_type_matches(asset.media_type, step.accepts):
                raise TransformError(self.name, path, f'{step.kind} cannot process {asset.media_type}')
            try:
                asset = step(asset)
            except TransformError:
                raise
            except Exception as e:
                raise TransformError(self.name, path, f'{step.kind} failed: {e}') from e
        return asset

    def combine(self, chunks: Sequence[Asset]) -> bytes:
        """
        Combine transformed chunks with this Stage's Bundler.
        """
        if not self.bundler:
            raise TypeError(f'Stage {self.name!r} does not aggregate')
        try:
            return self.bundler(chunks)
        except Exception as e:
            raise TransformError(self.name, self.bundler.output_path, f'Bundling failed: {e}') from e


class StagePlan:
    """
    The fully computed result of one Stage run, applied by `commit()`: every
    write happens only after every transform has succeeded.
    """
    def __init__(self,
                 stage: Stage,
                 writes: list[tuple[Path | None, Path, bytes]] | None = None,
                 removals: list[Path] | None = None,
                 on_commit: Callable[[], None] | None = None):
        self.stage = stage
        # (source, target, data)
        self.writes = writes or []
        self.removals = removals or []
        self.on_commit = on_commit

    def commit(self):
        self.stage.dest_dir.mkdir(parents=True, exist_ok=True)
        for source, target, data in self.writes:
            try:
                write_atomic(target, data)
            except OSError as e:
                raise TransformError(self.stage.name, source or target, f'Could not write {target}: {e}') from e
        for target in self.removals:
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                raise TransformError(self.stage.name, target, f'Could not remove {target}: {e}') from e
        if self.on_commit:
            self.on_commit()
