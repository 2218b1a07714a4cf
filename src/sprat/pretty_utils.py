"""
Internal utilities for pretty printing.
"""
import rich.console


# Consoles resolve sys.stdout and sys.stderr lazily, so redirection (and
# pytest's capture) keeps working after import.
_rich_consoles = {
    'stdout': rich.console.Console(),
    'stderr': rich.console.Console(stderr=True),
}


def print_with_style(*args, sep=' ', end='\n', file: str = 'stdout', style=None):
    """
    Enhanced print() function which supports rich console styles.
    """
    _rich_consoles[file].print(
        *args,
        sep=sep,
        end=end,
        style=style,
        highlight=False,
        markup=False,
        soft_wrap=True,
    )


def print_failure(label: str, message: str):
    """
    Print a failure diagnostic to stderr, labelled with the stage or task that
    produced it.
    """
    print_with_style(f'✗ {label}: {message}', file='stderr', style='bold red')
