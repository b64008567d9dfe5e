import pytest

from phrepl.trampoline import Done, More, run


def countdown(n):
    if n == 0:
        return Done('liftoff')
    return More(lambda: countdown(n - 1))


def test_run_does_not_grow_the_stack():
    assert run(countdown(100_000)) == 'liftoff'


def test_run_of_done():
    assert run(Done(3)) == 3


def test_run_rejects_other_values():
    with pytest.raises(TypeError):
        run(42)
