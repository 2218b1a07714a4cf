"""
The default stage graph for a static site, built from the path table.
"""
from __future__ import annotations

import typing as t

from .config import AssetKind, AssetPaths, BuildSettings
from .core import Stage
from .css import StyleCompileStep
from .images import ImageOptimizeStep
from .jinja import TemplateRenderStep
from .scripts import ScriptBundleStep
from .simple import ConcatBundler, RawCopyStep
from .svg import SpriteBundler, SpriteSymbolStep

if t.TYPE_CHECKING:
    from collections.abc import Callable


STATIC_KINDS: tuple[AssetKind, ...] = ('fonts', 'libs', 'img', 'svg')
DERIVED_KINDS: tuple[AssetKind, ...] = ('html', 'css', 'js')

DEFAULTS: dict[AssetKind, dict[str, t.Any]] = {
    'fonts': {'glob': ['**/*.{ttf,woff,woff2,eot,svg}']},
    'libs': {'glob': ['**/*.{css,js}']},
    'img': {'glob': ['**/*.{png,jpg,jpeg}']},
    'svg': {'glob': ['*.svg'], 'watch': ['**/*.svg'], 'bundle': 'sprite-svg.svg'},
    'html': {'glob': ['**/*.html'], 'exclude': ['**/_*', '**/_*/**'], 'watch': ['**/*.html']},
    'css': {'glob': ['**/*.{scss,css}'], 'exclude': ['**/_*'], 'watch': ['**/*.{scss,css}'],
            'bundle': 'custom.min.css'},
    'js': {'glob': ['*.js'], 'bundle': 'common.min.js'},
}


def _option(entry: AssetPaths, kind: AssetKind, key: str):
    return entry.get(key, DEFAULTS[kind].get(key))


def _stage(kind: AssetKind,
           entry: AssetPaths,
           after: tuple[str, ...],
           steps: list,
           bundler: Callable[[str], t.Any] | None = None):
    bundle = _option(entry, kind, 'bundle')
    return Stage(
        kind,
        entry['src'],
        entry['dest'],
        _option(entry, kind, 'glob'),
        steps,
        exclude=_option(entry, kind, 'exclude') or (),
        watch=_option(entry, kind, 'watch') or (),
        after=tuple(entry.get('after', after)),
        bundler=bundler(bundle) if bundler and bundle else None,
    )


def build_stages(settings: BuildSettings) -> list[Stage]:
    """
    Create the Stages configured in @settings: static assets (fonts, vendor
    libraries, images, the SVG sprite) with no predecessors, and derived
    assets (pages, the stylesheet bundle, the script bundle) after every
    configured static stage.
    """
    production = settings['mode'] == 'production'
    paths = settings['paths']
    static = tuple(k for k in STATIC_KINDS if k in paths)
    sourcemap_css = None if production else 'css'
    sourcemap_js = None if production else 'js'

    factories: dict[AssetKind, Callable[[AssetPaths], Stage]] = {
        'fonts': lambda e: _stage('fonts', e, (), [RawCopyStep()]),
        'libs': lambda e: _stage('libs', e, (), [RawCopyStep()]),
        'img': lambda e: _stage('img', e, (), [ImageOptimizeStep()]),
        'svg': lambda e: _stage('svg', e, (), [SpriteSymbolStep()], SpriteBundler),
        'html': lambda e: _stage('html', e, static, [TemplateRenderStep(minify=production)]),
        'css': lambda e: _stage(
            'css', e, static,
            [StyleCompileStep(minify=production, sourcemap=not production)],
            lambda name: ConcatBundler(name, sourcemap=sourcemap_css),
        ),
        'js': lambda e: _stage(
            'js', e, static,
            [ScriptBundleStep(minify=production)],
            lambda name: ConcatBundler(name, sourcemap=sourcemap_js),
        ),
    }
    return [factories[kind](paths[kind]) for kind in (*STATIC_KINDS, *DERIVED_KINDS) if kind in paths]
