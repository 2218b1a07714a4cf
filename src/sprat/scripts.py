"""
Steps for bundling scripts.
"""
from __future__ import annotations

import typing as t

from .core import Asset
from .dependencies import PipDependency
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from collections.abc import Sequence


class ScriptBundleStep(BaseStandardStep):
    """
    A Step preparing one script for its bundle. With @transpile, modern
    syntax is compiled down with Babel (through dukpy) using @presets, keeping
    generated code on its source lines so that the bundle's source map stays
    line-accurate. With @minify, the result is then minified with rjsmin.
    """
    kind = 'script-bundle'
    accepts = ('*javascript',)
    produces = 'text/javascript'

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('dukpy'),
            PipDependency('rjsmin'),
        }

    def __init__(self,
                 minify: bool = False,
                 transpile: bool = True,
                 presets: Sequence[str] = ('es2015',),
                 keep_bang_comments: bool = True):
        self.minify = minify
        self.transpile = transpile
        self.presets = list(presets)
        self.keep_bang_comments = keep_bang_comments

    def __repr__(self):
        return f'ScriptBundleStep(minify={self.minify}, transpile={self.transpile})'

    def babel(self, script: str) -> str:
        import dukpy
        result = dukpy.babel_compile(script, presets=self.presets, retainLines=True)
        return result['code']

    def __call__(self, asset: Asset):
        if not self.minify and not self.transpile:
            return self.emit(asset, asset.data)
        script = asset.text(self.encoding)
        if self.transpile:
            script = self.babel(script)
        if self.minify:
            import rjsmin
            script = rjsmin.jsmin(script, keep_bang_comments=self.keep_bang_comments)
            # Each chunk must end its last statement before the next chunk starts.
            if script and not script.rstrip().endswith((';', '}')):
                script += ';'
        return self.emit_text(asset, script)
