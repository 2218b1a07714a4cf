"""
The Pipeline Orchestrator: owns every Stage's incremental state for the life of
the process and runs Stages in dependency order, concurrently where the stage
graph allows.
"""
from __future__ import annotations

import asyncio
import typing as t

from .cache import AggregationCache
from .config import BuildSettings, ConfigError
from .core import TransformError, rm_children
from .custody import Custodian
from .pretty_utils import print_failure, print_with_style

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from .core import Stage, StagePlan


RunState = t.Literal['idle', 'running', 'completed', 'superseded', 'failed']
Outcome = t.Literal['completed', 'superseded', 'failed', 'blocked']


def resolve_order(stages: dict[str, Stage]) -> list[str]:
    """
    Return the Stage names in a dependency-respecting order, keeping
    declaration order among Stages that are not ordered relative to each
    other. Unknown predecessors and cycles raise ConfigError.
    """
    for stage in stages.values():
        for pred in stage.after:
            if pred not in stages:
                raise ConfigError(f'Stage {stage.name!r} depends on unknown stage {pred!r}')

    order: list[str] = []
    done: set[str] = set()
    remaining = list(stages)
    while remaining:
        ready = [n for n in remaining if all(p in done for p in stages[n].after)]
        if not ready:
            raise ConfigError(f'Dependency cycle between stages: {", ".join(remaining)}')
        for name in ready:
            order.append(name)
            done.add(name)
            remaining.remove(name)
    return order


class StageRunner:
    """
    Runs one Stage, serializing its runs and coalescing requests that arrive
    while a run is in flight.

    Every `request()` bumps the runner's generation. A run that sees a newer
    generation before it starts, or after its transforms but before it
    writes, stops as `superseded` without writing anything; only the newest
    request's run writes. State moves `idle → running → {completed,
    superseded, failed}`.
    """
    def __init__(self, stage: Stage):
        self.stage = stage
        self.state: RunState = 'idle'
        self.generation = 0
        self.latest: asyncio.Task[Outcome] | None = None
        self.tracker: Custodian | AggregationCache
        if stage.aggregating:
            self.tracker = AggregationCache(stage)
        else:
            self.tracker = Custodian(stage)
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    def __repr__(self):
        return f'StageRunner({self.stage.name!r}, state={self.state!r})'

    @property
    def lock(self):
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def reset(self):
        self.tracker.reset()

    def request(self) -> asyncio.Task[Outcome]:
        """
        Schedule a run of the Stage, superseding any run that has not yet
        written its outputs.
        """
        self.generation += 1
        task = asyncio.ensure_future(self._run(self.generation))
        self.latest = task
        return task

    async def settle(self, task: asyncio.Task[Outcome]) -> Outcome:
        """
        Await @task, following superseded runs to the run that replaced them.
        """
        outcome = await task
        while outcome == 'superseded' and self.latest is not None and self.latest is not task:
            task = self.latest
            outcome = await task
        return outcome

    async def _run(self, generation: int) -> Outcome:
        async with self.lock:
            if generation != self.generation:
                self.state = 'superseded'
                return 'superseded'
            self.state = 'running'
            try:
                plan: StagePlan = await asyncio.to_thread(self.tracker.plan)
                if generation != self.generation:
                    self.state = 'superseded'
                    print_with_style(f'[{self.stage.name}] Superseded by a newer run', style='yellow')
                    return 'superseded'
                await asyncio.to_thread(plan.commit)
            except TransformError as e:
                self.state = 'failed'
                print_failure(f'{e.stage} build error', f'{e.path}: {e.message}' if e.path else e.message)
                return 'failed'
            except OSError as e:
                self.state = 'failed'
                print_failure(f'{self.stage.name} build error', str(e))
                return 'failed'
            except Exception as e:
                self.state = 'failed'
                print_failure(f'{self.stage.name} build error', f'{e.__class__.__name__}: {e}')
                return 'failed'
            self.state = 'completed'
            print_with_style(f'[{self.stage.name}] Finished', style='green')
            return 'completed'


class Orchestrator:
    """
    Process-scoped owner of the stage graph and of every Stage's incremental
    state. Use as an async context manager, or call `close()` when done.
    """
    def __init__(self, settings: BuildSettings, stages: Sequence[Stage]):
        self.settings = settings
        self.stages: dict[str, Stage] = {}
        for stage in stages:
            if stage.name in self.stages:
                raise ConfigError(f'Duplicate stage name {stage.name!r}')
            self.stages[stage.name] = stage
        self.order = resolve_order(self.stages)
        for stage in self.stages.values():
            stage.bind()
        self.runners = {name: StageRunner(stage) for name, stage in self.stages.items()}
        self._background: set[asyncio.Task] = set()

    def __getitem__(self, name: str):
        return self.runners[name]

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def clean(self):
        """
        Purge the base directory and every Stage destination outside it, and
        forget all incremental state.
        """
        base_dir = self.settings['base_dir']
        print_with_style(f'Cleaning {base_dir}')
        rm_children(base_dir)
        for stage in self.stages.values():
            if not stage.dest_dir.is_relative_to(base_dir.absolute()):
                rm_children(stage.dest_dir)
        for runner in self.runners.values():
            runner.reset()

    def _select(self, names: Iterable[str] | None):
        if names is None:
            return set(self.stages)
        selected = set(names)
        unknown = selected - set(self.stages)
        if unknown:
            raise KeyError(f'Unknown stages: {", ".join(sorted(unknown))}')
        return selected

    async def run(self, names: Iterable[str] | None = None) -> dict[str, Outcome]:
        """
        Run the selected Stages (all by default). Each Stage starts once its
        selected predecessors completed; a Stage whose predecessor did not
        complete is `blocked`. Failures never propagate out of this method.
        """
        selected = self._select(names)
        tasks: dict[str, asyncio.Task[Outcome]] = {}

        async def run_one(name: str) -> Outcome:
            stage = self.stages[name]
            for pred in stage.after:
                if pred in tasks and await tasks[pred] != 'completed':
                    print_failure(stage.name, f'blocked because {pred} did not complete')
                    return 'blocked'
            runner = self.runners[name]
            return await runner.settle(runner.request())

        for name in self.order:
            if name in selected:
                tasks[name] = asyncio.create_task(run_one(name))

        outcomes = await asyncio.gather(*tasks.values())
        return dict(zip(tasks, outcomes))

    async def build(self) -> dict[str, Outcome]:
        """
        Clean the destination, then run every Stage.
        """
        self.clean()
        return await self.run()

    def trigger(self, name: str) -> asyncio.Task[Outcome]:
        """
        Re-run exactly one Stage in the background, as the watch trigger does.
        """
        task = self.runners[name].request()
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self):
        """
        Wait for every triggered run to finish.
        """
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self):
        """
        Cancel triggered runs still pending and drop all incremental state.
        """
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()
        for runner in self.runners.values():
            runner.reset()
