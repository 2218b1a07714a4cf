import asyncio
from pathlib import Path

from watchdog.events import (
    DirModifiedEvent, FileClosedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent,
)

from sprat.core import Stage
from sprat.orchestrator import Orchestrator
from sprat.simple import RawCopyStep
from sprat.test_harness import make_settings, write_tree
from sprat.watch import StageEventHandler, WatchTrigger


def html_stage(root: Path):
    return Stage(
        'html', root / 'src', root / 'build', '*.html', [RawCopyStep()],
        exclude='_*', watch='**/*.html',
    )


def test_handler_matches(tmp_path: Path):
    src = tmp_path / 'src'
    handler = StageEventHandler(html_stage(tmp_path), None, None)  # type: ignore[arg-type]

    assert handler.matches(FileModifiedEvent(str(src / 'index.html')))
    assert handler.matches(FileCreatedEvent(str(src / 'partials' / '_nav.html')))
    assert handler.matches(FileMovedEvent(str(src / 'draft.tmp'), str(src / 'page.html')))
    assert not handler.matches(FileModifiedEvent(str(src / 'notes.txt')))
    assert not handler.matches(FileClosedEvent(str(src / 'index.html')))
    assert not handler.matches(DirModifiedEvent(str(src)))
    assert not handler.matches(FileModifiedEvent(str(tmp_path / 'elsewhere.html')))


def test_watch_rebuilds_changed_stage(tmp_path: Path):
    write_tree(tmp_path / 'src', {'index.html': 'one'})
    write_tree(tmp_path / 'other', {'a.txt': 'a'})
    stages = [
        html_stage(tmp_path),
        Stage('text', tmp_path / 'other', tmp_path / 'build/text', '*.txt', [RawCopyStep()]),
    ]

    async def go():
        async with Orchestrator(make_settings(tmp_path), stages) as orchestrator:
            await orchestrator.run()
            trigger = WatchTrigger(orchestrator)
            trigger.start()
            try:
                assert set(trigger.handlers) == {'html', 'text'}
                (tmp_path / 'src' / 'about.html').write_text('two')
                for _ in range(100):
                    await asyncio.sleep(0.05)
                    if (tmp_path / 'build' / 'about.html').exists():
                        break
            finally:
                trigger.stop()
            await orchestrator.drain()
            return orchestrator['text'].generation

    text_generation = asyncio.run(go())
    assert (tmp_path / 'build' / 'about.html').read_text() == 'two'
    assert text_generation == 1


def test_watch_skips_missing_source_dir(tmp_path: Path, capsys):
    stage = Stage('fonts', tmp_path / 'missing', tmp_path / 'build', '*', [RawCopyStep()])

    async def go():
        async with Orchestrator(make_settings(tmp_path), [stage]) as orchestrator:
            async with WatchTrigger(orchestrator) as trigger:
                return dict(trigger.handlers)

    assert asyncio.run(go()) == {}
    assert 'Not watching missing source directory' in capsys.readouterr().err
