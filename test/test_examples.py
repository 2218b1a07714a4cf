import asyncio
import pathlib

import pytest

from sprat.orchestrator import Orchestrator
from sprat.recipe import build_stages
from sprat.test_harness import build_example, load_example, snapshot


EXPECTED_FILES = {
    'about.html',
    'index.html',
    'normalize.css',
    'polyfill.js',
    'css/custom.min.css',
    'fonts/body.woff',
    'img/pixel.png',
    'img/sprite-svg.svg',
    'js/common.min.js',
}


@pytest.mark.parametrize('mode', ['development', 'production'])
def test_example(mode, tmp_path: pathlib.Path):
    settings, outcomes = build_example('basic_site', tmp_path, mode)
    assert outcomes == {name: 'completed' for name in outcomes}
    assert set(outcomes) == {'fonts', 'libs', 'img', 'svg', 'html', 'css', 'js'}

    files = snapshot(settings['base_dir'])
    assert set(files) == EXPECTED_FILES

    index = files['index.html'].decode()
    assert 'Welcome' in index
    assert 'index.html' in index
    sprite = files['img/sprite-svg.svg'].decode()
    assert 'id="menu"' in sprite
    assert 'id="close"' in sprite
    css = files['css/custom.min.css'].decode()
    assert css.index('.header') < css.index('.footer')
    js = files['js/common.min.js'].decode()
    assert js.index('DOMContentLoaded') < js.index('function toggleMenu')

    if mode == 'development':
        assert 'sourceMappingURL=data:application/json' in css
        assert 'sourceMappingURL=data:application/json' in js
    else:
        assert 'sourceMappingURL' not in css
        assert 'sourceMappingURL' not in js
        assert '\n  ' not in index


def test_example_rebuild(tmp_path: pathlib.Path):
    """
    Build an example twice, and check that a clean build reproduces the
    first build exactly without leftovers.
    """
    settings, _ = build_example('basic_site', tmp_path)
    first = snapshot(settings['base_dir'])
    (settings['base_dir'] / 'css' / 'stale.css').write_text('.old{}')
    (settings['base_dir'] / 'leftover.html').write_text('old')

    settings, _ = build_example('basic_site', tmp_path)
    assert snapshot(settings['base_dir']) == first


def test_example_incremental_run(tmp_path: pathlib.Path):
    """
    Run an example twice in one process, and check that the second run
    writes nothing.
    """
    settings = load_example('basic_site', tmp_path)

    async def go():
        async with Orchestrator(settings, build_stages(settings)) as orchestrator:
            await orchestrator.build()
            times = {p: p.stat().st_mtime_ns for p in settings['base_dir'].rglob('*') if p.is_file()}
            outcomes = await orchestrator.run()
            return times, outcomes

    times, outcomes = asyncio.run(go())
    assert set(outcomes.values()) == {'completed'}
    assert times == {p: p.stat().st_mtime_ns for p in settings['base_dir'].rglob('*') if p.is_file()}
