"""
phrepl.result

The evaluator's return envelope. Success and Failure play the part that
Left and Right play in recursion schemes: a two case container that
callers fold over instead of inspecting.
"""
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from phrepl.data import OrderedMap
from phrepl.exceptions import ReplError
from phrepl.values import format_value

T = TypeVar('T')
U = TypeVar('U')


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    def is_success(self):
        return True

    def map(self, f: Callable[[T], U]) -> 'Success[U]':
        return Success(f(self.value))

    def flat_map(self, f):
        return f(self.value)

    def fold(self, on_failure, on_success):
        return on_success(self.value)

    def get_or_else(self, default):
        return self.value


@dataclass(frozen=True)
class Failure:
    error: ReplError

    def is_success(self):
        return False

    def map(self, f):
        return self

    def flat_map(self, f):
        return self

    def fold(self, on_failure, on_success):
        return on_failure(self.error)

    def get_or_else(self, default):
        return default


Result = Success | Failure


def attempt(thunk: Callable[[], T]) -> Result:
    "run thunk, turning a raised ReplError into a Failure"
    try:
        return Success(thunk())
    except ReplError as e:
        return Failure(e)


# ----------
#  Bindings
# ----------
# What the driver has to do with a successful result, besides printing it.


@dataclass(frozen=True)
class Bind:
    name: str


@dataclass(frozen=True)
class Alias:
    alias: str
    name: str


@dataclass(frozen=True)
class Namespace:
    name: str | None


@dataclass(frozen=True)
class Import:
    aliases: tuple[Alias, ...]


@dataclass(frozen=True)
class Declared:
    kind: str  # class, interface, trait or enum
    name: str


@dataclass(frozen=True)
class Silent:
    pass


@dataclass(frozen=True)
class Value:
    pass


Binding = Bind | Namespace | Import | Declared | Silent | Value


@dataclass(frozen=True)
class EvaluationResult:
    value: object
    type: str
    binding: Binding = Value()
    side_assignments: OrderedMap = field(default_factory=OrderedMap.empty)
    is_side_effect_only: bool = False
    removed_variables: tuple = ()  # unset() at the top level

    @property
    def assigned_variable(self):
        match self.binding:
            case Bind(name):
                return name
        return None

    def format(self):
        return format_value(self.value)
