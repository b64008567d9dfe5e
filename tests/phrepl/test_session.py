import pytest

from phrepl.session import Session


@pytest.fixture
def session():
    return Session.empty()


def test_empty_session(session):
    assert len(session.variables) == 0
    assert len(session.history) == 0
    assert session.var_counter == 0
    assert session.incomplete_buffer == ''
    assert session.current_namespace is None
    assert Session.create(True).color_enabled is True


def test_with_variable_leaves_original_untouched(session):
    s1 = session.with_variable('$x', 1)
    s2 = s1.with_variable('$x', 2)

    assert s1.get_variable('$x') == 1
    assert s2.get_variable('$x') == 2
    assert not session.has_variable('$x')


def test_with_and_without_variables(session):
    s = session.with_variables({'$a': 1, '$b': 2, '$c': 3})
    assert list(s.variables) == ['$a', '$b', '$c']
    assert session.with_variables({}) is session

    s2 = s.without_variables(['$b', '$nope'])
    assert list(s2.variables) == ['$a', '$c']


def test_next_variable_counts_up(session):
    s1, name0 = session.next_variable()
    s2, name1 = s1.next_variable()
    assert (name0, name1) == ('$var0', '$var1')
    assert s2.var_counter == 2
    assert session.var_counter == 0


def test_history_and_buffer(session):
    s = session.with_history('1 + 1').with_history('$x = 2')
    assert list(s.history) == ['1 + 1', '$x = 2']

    buffered = s.with_buffer('function f() {')
    assert buffered.incomplete_buffer == 'function f() {'
    assert buffered.clear_buffer().incomplete_buffer == ''
    assert s.clear_buffer() is s


def test_reset_keeps_colour_only(session):
    s = session.with_colors(True).with_variable('$x', 1).with_history('$x = 1')
    s, _ = s.next_variable()

    reset = s.reset()
    assert reset.color_enabled is True
    assert len(reset.variables) == 0
    assert len(reset.history) == 0
    assert reset.var_counter == 0


def test_resolve_name(session):
    assert session.resolve_name('Foo') == 'Foo'
    assert session.resolve_name('\\Foo\\Bar') == 'Foo\\Bar'

    s = session.with_namespace('App')
    assert s.resolve_name('Foo') == 'App\\Foo'
    assert s.resolve_name('\\Foo') == 'Foo'

    s = s.with_alias('Model', '\\Lib\\Orm\\Model').with_alias('Orm', 'Lib\\Orm')
    assert s.resolve_name('Model') == 'Lib\\Orm\\Model'
    assert s.resolve_name('Orm\\Query') == 'Lib\\Orm\\Query'

    assert s.with_namespace('').current_namespace is None
