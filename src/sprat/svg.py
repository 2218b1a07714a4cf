"""
Step and Bundler assembling SVG icons into a single sprite sheet of
`<symbol>` elements.
"""
from __future__ import annotations

import re
import typing as t

from .core import Asset, Bundler, Step
from .dependencies import PipDependency

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from lxml import etree


SVG_NS = 'http://www.w3.org/2000/svg'
XLINK_NS = 'http://www.w3.org/1999/xlink'
# Editor namespaces whose elements and attributes never matter for display.
EDITOR_NAMESPACES = {
    'http://www.inkscape.org/namespaces/inkscape',
    'http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd',
    'http://ns.adobe.com/AdobeIllustrator/10.0/',
    'http://www.bohemiancoding.com/sketch/ns',
}
SYMBOL_ATTRIBUTES = ('viewBox', 'preserveAspectRatio')
_URL_REF = re.compile(r'url\(#([^)]+)\)')


def _namespace(tag: str):
    return tag[1:].split('}', 1)[0] if tag.startswith('{') else ''


class SpriteSymbolStep(Step):
    """
    A Step turning one SVG icon into a `<symbol>` whose id is the file's stem.
    Comments, metadata and editor cruft are dropped, and the icon's own ids
    are prefixed with the symbol id so icons cannot collide once combined.
    """
    kind = 'sprite-build'
    accepts = ('image/svg+xml',)
    produces = 'image/svg+xml'

    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lxml'),
        }

    def symbol_id(self, asset: Asset):
        return asset.name.with_suffix('').as_posix().replace('/', '-')

    def _clean(self, root: etree._Element):
        from lxml import etree
        for element in list(root.iter()):
            if not isinstance(element.tag, str):
                continue
            if (
                _namespace(element.tag) in EDITOR_NAMESPACES
                or element.tag == f'{{{SVG_NS}}}metadata'
            ):
                parent = element.getparent()
                if parent is not None:
                    parent.remove(element)
                continue
            for attr in list(element.attrib):
                if _namespace(attr) in EDITOR_NAMESPACES:
                    del element.attrib[attr]
        etree.cleanup_namespaces(root)

    def _prefix_ids(self, root: etree._Element, prefix: str):
        ids = {e.get('id') for e in root.iter() if isinstance(e.tag, str) and e.get('id')}
        if not ids:
            return

        def replace_url(match: re.Match[str]):
            ref = match.group(1)
            return f'url(#{prefix}-{ref})' if ref in ids else match.group(0)

        href_attrs = ('href', f'{{{XLINK_NS}}}href')
        for element in root.iter():
            if not isinstance(element.tag, str):
                continue
            for attr, value in element.attrib.items():
                if attr == 'id' and value in ids:
                    element.set(attr, f'{prefix}-{value}')
                elif attr in href_attrs and value.startswith('#') and value[1:] in ids:
                    element.set(attr, f'#{prefix}-{value[1:]}')
                elif 'url(#' in value:
                    element.set(attr, _URL_REF.sub(replace_url, value))

    def __call__(self, asset: Asset):
        from lxml import etree

        parser = etree.XMLParser(remove_comments=True, remove_blank_text=True, resolve_entities=False)
        root = etree.fromstring(asset.data, parser)
        if root.tag != f'{{{SVG_NS}}}svg':
            raise ValueError(f'Expected an <svg> root element, found {root.tag}')

        symbol_id = self.symbol_id(asset)
        self._clean(root)
        self._prefix_ids(root, symbol_id)

        symbol = etree.Element(f'{{{SVG_NS}}}symbol', nsmap={None: SVG_NS})
        symbol.set('id', symbol_id)
        for attr in SYMBOL_ATTRIBUTES:
            if (value := root.get(attr)) is not None:
                symbol.set(attr, value)
        if root.get('viewBox') is None and root.get('width') and root.get('height'):
            width = root.get('width', '').removesuffix('px')
            height = root.get('height', '').removesuffix('px')
            symbol.set('viewBox', f'0 0 {width} {height}')
        for child in list(root):
            symbol.append(child)

        return self.emit(asset, etree.tostring(symbol, encoding='utf-8', xml_declaration=False))


class SpriteBundler(Bundler):
    """
    A Bundler wrapping `<symbol>` chunks into one hidden inline `<svg>`.
    """
    accepts = ('image/svg+xml',)

    def __call__(self, chunks: Sequence[Asset]):
        from lxml import etree

        sprite = etree.Element(f'{{{SVG_NS}}}svg', nsmap={None: SVG_NS, 'xlink': XLINK_NS})
        sprite.set('style', 'display:none')
        for chunk in chunks:
            sprite.append(etree.fromstring(chunk.data))
        etree.cleanup_namespaces(sprite, top_nsmap={None: SVG_NS})
        return etree.tostring(sprite, encoding='utf-8', xml_declaration=False) + b'\n'
