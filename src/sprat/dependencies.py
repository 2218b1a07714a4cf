"""
Trackable dependencies of transform steps on third-party packages.
"""
from __future__ import annotations

import abc
import importlib.util


class Dependency(abc.ABC):
    """
    A base class for trackable, evaluable dependencies.
    """

    @property
    @abc.abstractmethod
    def satisfied(self) -> bool:
        """
        A bool indicating whether this dependency is met.
        """

    @property
    @abc.abstractmethod
    def install_hint(self) -> str:
        """
        A string giving help on how to install this dependency.
        """

    def __repr__(self):
        return f'{self.__class__.__name__}({self}, satisfied={self.satisfied})'


class PipDependency(Dependency):
    """
    A Dependency on a pip-installable package. @name is the distribution name
    on the package index; @check_name is the importable module, when it
    differs.
    """
    def __init__(self, name: str, check_name: str | None = None):
        self.name = name
        self.check_name = check_name or name

    def __str__(self):
        return self.name

    def __eq__(self, other):
        return isinstance(other, PipDependency) and (self.name, self.check_name) == (other.name, other.check_name)

    def __hash__(self):
        return hash((self.name, self.check_name))

    @property
    def satisfied(self):
        """
        A bool indicating whether the module can be found, without importing
        it.
        """
        try:
            return importlib.util.find_spec(self.check_name) is not None
        except (ImportError, ValueError):
            return False

    @property
    def install_hint(self):
        return f'pip install {self.name}'
