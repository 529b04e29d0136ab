"""
Typed option registry.

Objects that accept configuration derive from :class:`OptionsFunctionality`,
register the options they understand with :meth:`add_option` and read them
back with :meth:`get_option`. Setting an option that was never registered is
an error, so misspelled names fail loudly instead of being ignored.
"""

from __future__ import annotations

import io
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np


class OptionType(Enum):
    """Type of a registered option."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    REAL = "real"
    STRING = "string"
    INTEGERVECTOR = "integervector"
    REALVECTOR = "realvector"
    DICTIONARY = "dictionary"


@dataclass(frozen=True)
class OptionInfo:
    """Registration record of one option."""

    type: OptionType
    default: Any = None
    description: str = ""


def _is_integer(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _is_real(value: Any) -> bool:
    return _is_integer(value) or isinstance(value, (float, np.floating))


def _check_type(name: str, op_type: OptionType, value: Any) -> Any:
    """Validate ``value`` against ``op_type`` and return the stored value."""
    if op_type is OptionType.BOOLEAN:
        ok = isinstance(value, (bool, np.bool_))
        value = bool(value) if ok else value
    elif op_type is OptionType.INTEGER:
        ok = _is_integer(value)
        value = int(value) if ok else value
    elif op_type is OptionType.REAL:
        ok = _is_real(value)
        value = float(value) if ok else value
    elif op_type is OptionType.STRING:
        ok = isinstance(value, str)
    elif op_type is OptionType.INTEGERVECTOR:
        ok = isinstance(value, (list, tuple, np.ndarray)) and all(_is_integer(v) for v in value)
        value = [int(v) for v in value] if ok else value
    elif op_type is OptionType.REALVECTOR:
        ok = isinstance(value, (list, tuple, np.ndarray)) and all(_is_real(v) for v in value)
        value = [float(v) for v in value] if ok else value
    else:
        ok = isinstance(value, dict)
        value = dict(value) if ok else value
    if not ok:
        raise TypeError(
            f"Option '{name}' expects a value of type {op_type.value}, got {type(value).__name__}"
        )
    return value


class OptionsFunctionality:
    """Base class for objects configured through named, typed options."""

    def __init__(self) -> None:
        self._allowed_options: dict[str, OptionInfo] = {}
        self._options: dict[str, Any] = {}
        self.add_option("name", OptionType.STRING, "unnamed_shared_object", "Name of the object")

    def add_option(
        self,
        name: str,
        op_type: OptionType,
        default: Any = None,
        description: str = "",
    ) -> None:
        """
        Register an option.

        Args:
            name: Option name
            op_type: Type the values must have
            default: Default value, None leaves the option unset
            description: Human readable description for print_options()
        """
        self._allowed_options[name] = OptionInfo(op_type, default, description)
        if default is not None:
            self._options[name] = _check_type(name, op_type, default)

    def set_option(self, name: str | dict, value: Any = None) -> None:
        """Set one option, or all options of a dictionary when ``name`` is a dict."""
        if isinstance(name, dict):
            for key, val in name.items():
                self.set_option(key, val)
            return
        info = self._allowed_options.get(name)
        if info is None:
            raise KeyError(f"Unknown option: {name}. Allowed options: {sorted(self._allowed_options)}")
        self._options[name] = _check_type(name, info.type, value)

    def get_option(self, name: str) -> Any:
        if name not in self._options:
            raise KeyError(f"Option: {name} has not been set.")
        return self._options[name]

    def has_option(self, name: str) -> bool:
        return name in self._allowed_options

    def has_set_option(self, name: str) -> bool:
        if not self.has_option(name):
            raise KeyError(f"has_set_option: no such option '{name}'")
        return name in self._options

    def dictionary(self) -> dict[str, Any]:
        """All options that currently hold a value."""
        return dict(self._options)

    def copy_options(self, other: OptionsFunctionality) -> None:
        """Copy every set option of ``other`` into this object."""
        for name, value in other._options.items():
            self.set_option(name, value)

    def print_options(self, stream: Optional[io.TextIOBase] = None) -> None:
        stream = sys.stdout if stream is None else stream
        print('"Option name" [type] = value', file=stream)
        for name in sorted(self._allowed_options):
            info = self._allowed_options[name]
            if name in self._options:
                val = f"= {self._options[name]}"
            else:
                val = "(not set)"
            print(f'  "{name}" [{info.type.value}] {val}', file=stream)
        print(file=stream)
