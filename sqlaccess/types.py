"""
Value types shared by the execution modes.

``CommandSpec`` describes one command to run; ``Table`` and ``DataSet``
hold materialised result sets; ``RoutineParameter`` and
``ParameterDescriptor`` describe a routine's declared parameters as read
from the database catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .utils.query_type import QueryKind, classify, validate

Parameter = Tuple[str, Any]


def _normalise(parameters: Optional[Sequence[Parameter]]) -> Tuple[Parameter, ...]:
    # Names are stored without the leading ``@``; they end up in SQL text.
    if not parameters:
        return ()
    normalised = []
    for name, value in parameters:
        bare = str(name).lstrip("@")
        if not validate(bare):
            raise ValidationError(f"Invalid parameter name detected: {name!r}")
        normalised.append((bare, value))
    return tuple(normalised)


@dataclass(frozen=True)
class CommandSpec:
    """A single command: text or routine name, its kind and parameters.

    ``timeout`` is in seconds; ``None`` leaves the driver default.
    """

    text: str
    kind: QueryKind
    parameters: Tuple[Parameter, ...] = ()
    timeout: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _normalise(self.parameters))

    @classmethod
    def of(cls, text: str, kind: Optional[QueryKind] = None,
           parameters: Optional[Sequence[Parameter]] = None,
           timeout: Optional[int] = None) -> "CommandSpec":
        """Build a spec, classifying ``text`` when ``kind`` is omitted.

        Raises:
            ValidationError: If ``kind`` is omitted and ``text`` is
                neither a ``SELECT`` nor a valid routine name.
        """
        if kind is None:
            kind = classify(text)
        return cls(text=text, kind=kind, parameters=_normalise(parameters), timeout=timeout)

    @property
    def is_routine(self) -> bool:
        return self.kind.is_routine

    def parameter_map(self) -> Dict[str, Any]:
        return dict(self.parameters)


@dataclass
class Table:
    """A materialised result set."""

    columns: List[str] = field(default_factory=list)
    rows: List[tuple] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass
class DataSet:
    """Every result set produced by one command, in order."""

    tables: List[Table] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tables)

    def __getitem__(self, index: int) -> Table:
        return self.tables[index]

    def first(self) -> Table:
        return self.tables[0] if self.tables else Table()


@dataclass(frozen=True)
class RoutineParameter:
    name: str
    type_name: str
    ordinal: int
    is_output: bool = False

    @property
    def is_return_value(self) -> bool:
        return self.ordinal == 0


@dataclass(frozen=True)
class ParameterDescriptor:
    """Declared parameters of a routine, in declaration order."""

    routine: str
    parameters: Tuple[RoutineParameter, ...] = ()

    @property
    def bindable(self) -> Tuple[RoutineParameter, ...]:
        return tuple(p for p in self.parameters if not p.is_return_value)

    def bind(self, values: Optional[Sequence[Any]]) -> Tuple[Parameter, ...]:
        """Pair positional ``values`` with the declared parameters.

        The return-value slot is skipped and only
        ``min(declared, supplied)`` values are bound; ``None`` binds as
        SQL ``NULL``.
        """
        if not values:
            return ()
        return tuple((p.name.lstrip("@"), value) for p, value in zip(self.bindable, values))
