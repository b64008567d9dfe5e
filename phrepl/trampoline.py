"""
phrepl.trampoline

Tail calls without a growing stack. A step returns either More, holding
the rest of the computation, or Done, holding the answer; run keeps
forcing More until it sees Done.

    def countdown(n):
        if n == 0:
            return Done('liftoff')
        return More(lambda: countdown(n - 1))

    run(countdown(100_000))  # no RecursionError
"""
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar


T = TypeVar('T')


@dataclass(frozen=True)
class Done(Generic[T]):
    value: T


@dataclass(frozen=True)
class More(Generic[T]):
    thunk: Callable[[], 'Done[T] | More[T]']


def run(step):
    "the value of the first Done reached from step"
    while isinstance(step, More):
        step = step.thunk()
    match step:
        case Done(value):
            return value
    raise TypeError(f'expected More or Done, got {step!r}')
