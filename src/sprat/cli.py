"""
The `sprat` command: one task per invocation, configured through the
environment (`SPRAT_ENV`, `SPRAT_CONFIG`, `SPRAT_PORT`).
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import typing as t

from .config import ConfigError, get_port, load_settings
from .core import Step, StepUnavailableException
from .orchestrator import Orchestrator
from .pretty_utils import print_with_style
from .recipe import build_stages

if t.TYPE_CHECKING:
    from .core import Stage


TASKS = ('default', 'clean', 'build', 'watch', 'serve', 'steps')


def pprint_step(step: t.Type[Step]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [str(d) for d in step.get_dependencies() if not d.satisfied]
    if missing:
        text = ', '.join(sorted(missing))
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: Step):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{step} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in sorted(step.get_dependencies(), key=str):
        if dep.satisfied:
            print_with_style(f'✓ {dep}', style='green')
        else:
            print_with_style(f'✗ {dep}: {dep.install_hint}', style='red')


def audit_steps(stages: list[Stage] | None):
    """
    List available and unavailable Steps, and the Steps the configured stages
    use when a configuration could be loaded.
    """
    all_steps = set(Step.get_all_steps())
    available_steps = set(Step.get_available_steps())
    groups = {
        'Available steps': available_steps,
        'Unavailable steps': all_steps - available_steps,
    }
    if stages is not None:
        groups['Used steps'] = {s.__class__ for stage in stages for s in stage.steps}
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)


async def run_forever(orchestrator: Orchestrator, watch: bool = False, port: int | None = None):
    """
    Keep the watch trigger and/or dev server running until cancelled.
    """
    from .server import DevServer
    from .watch import WatchTrigger

    trigger = WatchTrigger(orchestrator) if watch else None
    server = DevServer(orchestrator.settings['base_dir'], port) if port is not None else None
    try:
        if trigger:
            trigger.start()
        if server:
            server.start()
        await asyncio.Event().wait()
    finally:
        if server:
            server.stop()
        if trigger:
            trigger.stop()


async def run_task(task: str, orchestrator: Orchestrator, port: int) -> bool:
    """
    Run one CLI task to completion, returning False when a one-shot build had
    a stage that did not complete.
    """
    async with orchestrator:
        if task == 'clean':
            orchestrator.clean()
        elif task == 'build':
            outcomes = await orchestrator.build()
            return all(o == 'completed' for o in outcomes.values())
        elif task == 'watch':
            await run_forever(orchestrator, watch=True)
        elif task == 'serve':
            await run_forever(orchestrator, port=port)
        elif task == 'default':
            await orchestrator.build()
            await run_forever(orchestrator, watch=True, port=port)
        else:
            raise ValueError(f'Unknown task {task!r}')
    return True


def main(arguments: list[str] | None = None):
    """
    sprat main function. Loads the path table, builds the stage graph, and
    runs the requested task.
    """
    parser = argparse.ArgumentParser(
        prog='sprat',
        description='Build, watch and serve the assets of a static site.',
    )
    parser.add_argument('task',
                        nargs='?',
                        choices=TASKS,
                        default='default',
                        help='task to run (default: build, then watch and serve)')
    args = parser.parse_args(arguments)

    try:
        settings = load_settings()
        stages = build_stages(settings)
    except ConfigError as e:
        if args.task == 'steps':
            audit_steps(None)
            return
        print_with_style(f'Configuration error: {e}', file='stderr', style='red')
        sys.exit(1)

    if args.task == 'steps':
        audit_steps(stages)
        return

    try:
        port = get_port()
        orchestrator = Orchestrator(settings, stages)
    except ConfigError as e:
        print_with_style(f'Configuration error: {e}', file='stderr', style='red')
        sys.exit(1)
    except StepUnavailableException as e:
        pprint_missing_deps(e.step)
        sys.exit(1)

    try:
        success = asyncio.run(run_task(args.task, orchestrator, port))
    except KeyboardInterrupt:
        print_with_style('Stopped', style='yellow')
        return
    if not success:
        sys.exit(1)
