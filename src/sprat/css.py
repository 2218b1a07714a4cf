"""
Steps for compiling stylesheets.
"""
from __future__ import annotations

import json
import typing as t
from pathlib import PurePosixPath

from .core import Asset
from .dependencies import PipDependency
from .simple import BaseStandardStep
from .sourcemaps import line_origins, realign

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from .core import LineOrigin


class StyleCompileStep(BaseStandardStep):
    """
    A Step compiling SCSS (or plain CSS) into CSS with libsass, then, if
    @browsers_list is given, adding vendor prefixes for those browsers with
    lightningcss. @minify selects compressed output; otherwise output is
    expanded and readable. With @sourcemap, the lines of the result remember
    which stylesheet or partial they came from, for the bundle's source map.
    """
    kind = 'style-compile'
    accepts = ('text/x-scss', 'text/css')
    produces = 'text/css'

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('libsass', check_name='sass'),
            PipDependency('lightningcss'),
        }

    def __init__(self,
                 minify: bool = False,
                 browsers_list: Sequence[str] | None = ('last 2 versions',),
                 include_paths: Sequence[str] = (),
                 sourcemap: bool = False):
        self.minify = minify
        self.browsers_list = list(browsers_list) if browsers_list else None
        self.include_paths = list(include_paths)
        self.sourcemap = sourcemap

    def __repr__(self):
        return f'StyleCompileStep(minify={self.minify}, browsers_list={self.browsers_list!r})'

    def rename(self, name: PurePosixPath):
        return name.with_suffix('.css')

    def compile(self, asset: Asset) -> str:
        import sass
        return sass.compile(
            string=asset.text(self.encoding),
            output_style='compressed' if self.minify else 'expanded',
            include_paths=self._include_paths(asset),
        )

    def compile_mapped(self, asset: Asset) -> tuple[str, list[LineOrigin | None]]:
        """
        Compile the source file of @asset along with libsass' source map,
        reduced to the origin of each line of CSS.
        """
        import sass
        map_file = asset.source.with_name(asset.source.name + '.map')
        css, source_map = sass.compile(
            filename=str(asset.source),
            output_style='compressed' if self.minify else 'expanded',
            include_paths=self._include_paths(asset),
            source_map_filename=str(map_file),
            omit_source_map_url=True,
        )
        return css, line_origins(json.loads(source_map), str(map_file.parent))

    def _include_paths(self, asset: Asset):
        return [str(asset.source.parent), str(self.stage.source_dir), *self.include_paths]

    def prefix(self, asset: Asset, css: str) -> str:
        import lightningcss
        return lightningcss.process_stylesheet(
            css,
            filename=str(asset.source),
            browsers_list=self.browsers_list,
            minify=self.minify,
        )

    def __call__(self, asset: Asset):
        if not self.sourcemap:
            css = self.compile(asset)
            if self.browsers_list:
                css = self.prefix(asset, css)
            return self.emit_text(asset, css)

        css, origins = self.compile_mapped(asset)
        if self.browsers_list:
            prefixed = self.prefix(asset, css)
            origins = realign(origins, css, prefixed)
            css = prefixed
        return self.emit_text(asset, css, origins)
