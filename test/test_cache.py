from pathlib import Path

import pytest

from sprat.cache import AggregationCache
from sprat.core import Asset, Stage, Step
from sprat.css import StyleCompileStep
from sprat.simple import ConcatBundler, RawCopyStep
from sprat.test_harness import bump_mtime, write_tree


class CountingStep(Step):
    kind = 'raw-copy'

    def __init__(self):
        self.seen: list[str] = []

    def __call__(self, asset: Asset):
        self.seen.append(asset.name.as_posix())
        return self.emit(asset, asset.data.upper())


def make_stage(root: Path, step: Step | None = None, watch: str | None = None):
    stage = Stage(
        'bundle', root / 'src', root / 'out', '*.txt', [step or CountingStep()],
        exclude='_*', watch=watch or (), bundler=ConcatBundler('all.txt'),
    )
    stage.bind()
    return stage


def run(cache: AggregationCache):
    cache.plan().commit()
    assert cache.stage.bundler
    return cache.stage.bundler.output_path.read_text()


@pytest.fixture
def stage(tmp_path: Path):
    write_tree(tmp_path / 'src', {'b.txt': 'bee', 'a.txt': 'ay', 'c.txt': 'sea'})
    return make_stage(tmp_path)


def test_requires_bundler(tmp_path: Path):
    with pytest.raises(TypeError):
        AggregationCache(Stage('plain', tmp_path, tmp_path / 'out', '*', [RawCopyStep()]))


def test_combines_in_path_order(stage: Stage):
    cache = AggregationCache(stage)
    assert run(cache) == 'AY\nBEE\nSEA\n'
    assert cache.combined_order() == [stage.source_dir / n for n in ('a.txt', 'b.txt', 'c.txt')]


def test_only_changed_file_is_retransformed(stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    step = stage.steps[0]
    assert isinstance(step, CountingStep)
    step.seen.clear()

    source = stage.source_dir / 'b.txt'
    source.write_text('bumble bee')
    bump_mtime(source)
    assert cache.is_stale(source)
    assert not cache.is_stale(stage.source_dir / 'a.txt')

    assert run(cache) == 'AY\nBUMBLE BEE\nSEA\n'
    assert step.seen == ['b.txt']


def test_unchanged_run_writes_nothing(stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    plan = cache.plan()
    assert plan.writes == []


def test_missing_output_is_rewritten_from_cache(stage: Stage):
    cache = AggregationCache(stage)
    output = run(cache)
    step = stage.steps[0]
    assert isinstance(step, CountingStep)
    step.seen.clear()

    assert stage.bundler
    stage.bundler.output_path.unlink()
    assert run(cache) == output
    assert step.seen == []


def test_deleted_source_is_purged(stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    (stage.source_dir / 'a.txt').unlink()
    assert run(cache) == 'BEE\nSEA\n'
    assert stage.source_dir / 'a.txt' not in cache.records


def test_new_source_is_added(stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    (stage.source_dir / 'ab.txt').write_text('abba')
    assert run(cache) == 'AY\nABBA\nBEE\nSEA\n'


def test_incremental_result_equals_clean_build(tmp_path: Path, stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    (stage.source_dir / 'a.txt').unlink()
    (stage.source_dir / 'd.txt').write_text('dee')
    source = stage.source_dir / 'c.txt'
    source.write_text('see')
    bump_mtime(source)
    incremental = run(cache)

    fresh = AggregationCache(make_stage(tmp_path))
    assert run(fresh) == incremental


def test_support_change_invalidates_every_entry(tmp_path: Path):
    write_tree(tmp_path / 'src', {'a.txt': 'a', 'b.txt': 'b', '_shared.txt': 'shared'})
    step = CountingStep()
    stage = make_stage(tmp_path, step, watch='*.txt')
    cache = AggregationCache(stage)
    run(cache)
    step.seen.clear()

    bump_mtime(stage.source_dir / '_shared.txt')
    run(cache)
    assert step.seen == ['a.txt', 'b.txt']

    step.seen.clear()
    run(cache)
    assert step.seen == []


def test_uncommitted_plan_leaves_cache_untouched(stage: Stage):
    cache = AggregationCache(stage)
    run(cache)
    records = dict(cache.records)

    source = stage.source_dir / 'a.txt'
    source.write_text('changed')
    bump_mtime(source)
    cache.plan()
    assert cache.records == records
    assert cache.is_stale(source)


def test_scss_edit_rebuilds_one_entry(tmp_path: Path):
    write_tree(tmp_path / 'styles', {
        'a.scss': '.a { color: red; }\n',
        'b.scss': '.b { color: blue; }\n',
    })
    stage = Stage(
        'css', tmp_path / 'styles', tmp_path / 'out', '*.scss',
        [StyleCompileStep(minify=True, browsers_list=None)],
        bundler=ConcatBundler('site.css'),
    )
    stage.bind()
    cache = AggregationCache(stage)

    first = run(cache)
    assert '.a{color:red}' in first
    assert '.b{color:blue}' in first
    assert first.index('.a{') < first.index('.b{')

    source = tmp_path / 'styles' / 'a.scss'
    source.write_text('.a { color: green; }\n')
    bump_mtime(source)
    second = run(cache)
    assert '.a{color:green}' in second
    assert '.a{color:red}' not in second
    assert '.b{color:blue}' in second
    assert second.index('.a{') < second.index('.b{')
