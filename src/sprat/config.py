"""
Loading and validation of the declarative path table and of the
environment-selected build mode.
"""
from __future__ import annotations

import json
import os
import typing as t
from pathlib import Path

if t.TYPE_CHECKING:
    from collections.abc import Mapping


BuildMode = t.Literal['development', 'production']
AssetKind = t.Literal['html', 'css', 'js', 'fonts', 'img', 'svg', 'libs']

ASSET_KINDS: tuple[AssetKind, ...] = ('fonts', 'libs', 'img', 'svg', 'html', 'css', 'js')

ENV_MODE = 'SPRAT_ENV'
ENV_CONFIG = 'SPRAT_CONFIG'
ENV_PORT = 'SPRAT_PORT'

DEFAULT_CONFIG = Path('paths.json')
DEFAULT_PORT = 3000

_PATTERN_KEYS = ('glob', 'exclude', 'watch', 'after')


class ConfigError(Exception):
    """
    Raised when the path table is missing or malformed. Always fatal.
    """


class AssetPaths(t.TypedDict, total=False):
    """
    TypedDict for one entry of the path table, after validation. Directories
    are resolved against the config file's directory.
    """
    src: Path
    dest: Path
    glob: list[str]
    exclude: list[str]
    watch: list[str]
    bundle: str
    after: list[str]


class BuildSettings(t.TypedDict):
    """
    TypedDict for processed build settings ready for passing to an
    Orchestrator.
    """
    base_dir: Path
    mode: BuildMode
    paths: dict[AssetKind, AssetPaths]


def get_mode(environ: Mapping[str, str] | None = None) -> BuildMode:
    """
    Select the build mode. An unset or `development` value selects
    development; anything else is treated as production.
    """
    environ = os.environ if environ is None else environ
    value = environ.get(ENV_MODE, '')
    if not value or value == 'development':
        return 'development'
    return 'production'


def get_config_path(environ: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if environ is None else environ
    return Path(environ.get(ENV_CONFIG) or DEFAULT_CONFIG)


def get_port(environ: Mapping[str, str] | None = None) -> int:
    environ = os.environ if environ is None else environ
    value = environ.get(ENV_PORT)
    if not value:
        return DEFAULT_PORT
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f'{ENV_PORT} must be an integer, not {value!r}') from e


def _string_list(kind: str, key: str, value: t.Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f'paths.{kind}.{key} must be a string or a list of strings')


def _parse_entry(kind: str, raw: t.Any, root: Path, base_dir: Path) -> AssetPaths:
    if not isinstance(raw, dict):
        raise ConfigError(f'paths.{kind} must be an object')

    unknown = set(raw) - {'src', 'dest', 'bundle', *_PATTERN_KEYS}
    if unknown:
        raise ConfigError(f'paths.{kind} has unknown keys: {", ".join(sorted(unknown))}')

    if not isinstance(raw.get('src'), str):
        raise ConfigError(f'paths.{kind}.src is required and must be a string')
    entry = AssetPaths(src=root / raw['src'])

    if 'dest' in raw:
        if not isinstance(raw['dest'], str):
            raise ConfigError(f'paths.{kind}.dest must be a string')
        entry['dest'] = root / raw['dest']
    elif kind == 'libs':
        entry['dest'] = base_dir
    else:
        raise ConfigError(f'paths.{kind}.dest is required')

    if 'bundle' in raw:
        if not isinstance(raw['bundle'], str) or not raw['bundle']:
            raise ConfigError(f'paths.{kind}.bundle must be a non-empty string')
        entry['bundle'] = raw['bundle']

    for key in _PATTERN_KEYS:
        if key in raw:
            entry[key] = _string_list(kind, key, raw[key])

    return entry


def parse_settings(data: t.Any, root: Path, mode: BuildMode) -> BuildSettings:
    """
    Validate the decoded contents of a path table and convert it into
    BuildSettings.
    """
    if not isinstance(data, dict) or not isinstance(data.get('paths'), dict):
        raise ConfigError('The path table must be an object with a "paths" object')
    table: dict[str, t.Any] = dict(data['paths'])

    base = table.pop('baseDir', None)
    if not isinstance(base, str) or not base:
        raise ConfigError('paths.baseDir is required and must be a non-empty string')
    base_dir = root / base

    unknown = set(table) - set(ASSET_KINDS)
    if unknown:
        raise ConfigError(f'Unknown asset kinds in paths: {", ".join(sorted(unknown))}')

    paths: dict[AssetKind, AssetPaths] = {}
    for kind in ASSET_KINDS:
        if kind in table:
            paths[kind] = _parse_entry(kind, table[kind], root, base_dir)

    return BuildSettings(base_dir=base_dir, mode=mode, paths=paths)


def load_settings(path: Path | None = None,
                  environ: Mapping[str, str] | None = None) -> BuildSettings:
    """
    Load BuildSettings from a JSON path table. @path defaults to the
    `SPRAT_CONFIG` environment variable, then `paths.json`.
    """
    path = path or get_config_path(environ)
    try:
        text = path.read_text('utf-8')
    except FileNotFoundError as e:
        raise ConfigError(f'Configuration file not found: {path}') from e
    except OSError as e:
        raise ConfigError(f'Could not read configuration file {path}: {e}') from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f'Invalid JSON in {path}: {e}') from e

    return parse_settings(data, path.resolve().parent, get_mode(environ))
