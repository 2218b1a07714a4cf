import asyncio
import json
import os
import pathlib
import typing as t

from sprat.config import BuildMode, BuildSettings, load_settings
from sprat.core import Stage
from sprat.orchestrator import Orchestrator, Outcome
from sprat.recipe import build_stages


EXAMPLES_DIR = pathlib.Path(__file__).parents[2] / 'examples'


def write_tree(root: pathlib.Path, files: dict[str, str | bytes]):
    """
    Create every file of @files (relative path to content) below @root.
    """
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, 'utf-8')


def snapshot(root: pathlib.Path) -> dict[str, bytes]:
    """
    Map every file below @root, by relative POSIX path, to its content.
    """
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob('*'))
        if p.is_file()
    }


def mtimes(root: pathlib.Path) -> dict[str, int]:
    return {
        p.relative_to(root).as_posix(): p.stat().st_mtime_ns
        for p in sorted(root.rglob('*'))
        if p.is_file()
    }


def bump_mtime(path: pathlib.Path, seconds: float = 10):
    """
    Move @path's modification time forward, so changes register even on
    filesystems with coarse timestamps.
    """
    stat = path.stat()
    delta = int(seconds * 1_000_000_000)
    os.utime(path, ns=(stat.st_atime_ns + delta, stat.st_mtime_ns + delta))


def make_settings(tmp_path: pathlib.Path, mode: BuildMode = 'development') -> BuildSettings:
    return BuildSettings(base_dir=tmp_path / 'build', mode=mode, paths={})


def write_config(root: pathlib.Path, paths: dict[str, t.Any]):
    config = root / 'paths.json'
    config.write_text(json.dumps({'paths': paths}), 'utf-8')
    return config


def load_example(name: str, tmp_path: pathlib.Path, mode: BuildMode = 'development'):
    """
    Load the path table of an example site, with its build directory moved
    below @tmp_path.
    """
    settings = load_settings(
        EXAMPLES_DIR / name / 'paths.json',
        environ={'SPRAT_ENV': mode},
    )
    old_base = settings['base_dir']
    new_base = tmp_path / 'build'
    for entry in settings['paths'].values():
        dest = entry['dest']
        entry['dest'] = new_base / dest.relative_to(old_base) if dest.is_relative_to(old_base) else dest
    settings['base_dir'] = new_base
    return settings


def run_stages(settings: BuildSettings, stages: list[Stage], names=None) -> dict[str, Outcome]:
    """
    Run @stages once with a fresh Orchestrator.
    """
    async def _run():
        async with Orchestrator(settings, stages) as orchestrator:
            return await orchestrator.run(names)
    return asyncio.run(_run())


def build_example(name: str, tmp_path: pathlib.Path, mode: BuildMode = 'development'):
    settings = load_example(name, tmp_path, mode)

    async def _build():
        async with Orchestrator(settings, build_stages(settings)) as orchestrator:
            return await orchestrator.build()
    return settings, asyncio.run(_build())
