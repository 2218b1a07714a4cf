"""
Steps for rendering Jinja templates into HTML pages.
"""
from __future__ import annotations

import typing as t
from pathlib import PurePosixPath

from .core import Asset
from .dependencies import PipDependency
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from jinja2 import Environment


class TemplateRenderStep(BaseStandardStep):
    """
    A Step rendering each page template with Jinja. Templates are looked up
    relative to the Stage's source directory, so pages can extend layouts and
    include partials living there. With @minify, the rendered HTML is
    minified with minify-html; otherwise it is kept as authored.
    """
    kind = 'template-render'
    accepts = ('text/html',)
    produces = 'text/html'

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('jinja2'),
            PipDependency('minify-html', check_name='minify_html'),
        }

    def __init__(self,
                 minify: bool = False,
                 env: Environment | None = None,
                 extra_globals: dict[str, t.Any] | None = None,
                 ext: str = '.html'):
        if env and extra_globals:
            env.globals.update(extra_globals)
        self.minify = minify
        self.ext = ext
        self._env = env
        self._extra_globals = extra_globals

    def __repr__(self):
        return f'TemplateRenderStep(minify={self.minify})'

    @property
    def env(self):
        """
        Returns the Jinja `Environment` for this Step, creating and caching it
        if necessary.
        """
        if self._env:
            return self._env

        from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
        self._env = Environment(
            loader=FileSystemLoader(self.stage.source_dir),
            autoescape=select_autoescape(),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        if self._extra_globals:
            self._env.globals.update(self._extra_globals)
        return self._env

    def rename(self, name: PurePosixPath):
        return name.with_suffix(self.ext)

    def minify_html(self, html: str) -> str:
        from minify_html import minify
        return minify(
            html,
            minify_css=True,
            minify_js=True,
            keep_html_and_head_opening_tags=True,
        )

    def __call__(self, asset: Asset):
        template = self.env.get_template(asset.name.as_posix())
        html = template.render(page=asset.name.as_posix())
        if self.minify:
            html = self.minify_html(html)
        elif not html.endswith('\n'):
            html += '\n'
        return self.emit_text(asset, html)
