import pytest

from phrepl.exceptions import EvaluationError, ReplError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.runtime import ClassInfo, HostRuntime, TypeRegistry
from phrepl.values import Generator, PhpArray, format_value


@pytest.fixture
def runtime():
    return HostRuntime(writer=lambda text: None)


def test_registry_is_case_insensitive():
    registry = TypeRegistry.standard()
    assert registry.get('exception') is registry.get('\\Exception')
    assert registry.exists('Iterator', kind='interface')
    assert not registry.exists('Iterator', kind='class')
    assert registry.get('InvalidArgumentException').is_subclass_of('Throwable')


def test_output_can_be_redirected():
    out, captured = [], []
    runtime = HostRuntime(writer=out.append)
    runtime.write('a')
    with runtime.redirect_output(captured.append):
        runtime.write('b')
    runtime.write('c')
    assert out == ['a', 'c']
    assert captured == ['b']


def test_invoke_checks_arity(runtime):
    def add(a, b=1):
        return a + b

    assert runtime.invoke(add, [1]) == 2
    assert runtime.invoke(add, [1], {'b': 5}) == 6
    with pytest.raises(ReplTypeError) as exc_info:
        runtime.invoke(add, [], name='add')
    assert exc_info.value.reason == 'add() expects at least 1 argument, 0 given'
    with pytest.raises(EvaluationError, match='Unknown parameter'):
        runtime.invoke(add, [1], {'c': 2})


class Unsigned:
    "a host callable inspect cannot read a signature from"

    __signature__ = 42

    def __call__(self, *args, **kwargs):
        return len(args) + len(kwargs)


def test_named_arguments_need_a_signature(runtime):
    assert runtime.invoke(Unsigned(), [1, 2], name='unsigned') == 2
    with pytest.raises(EvaluationError) as exc_info:
        runtime.invoke(Unsigned(), [1], {'x': 2}, name='unsigned')
    assert exc_info.value.reason == 'Cannot use named arguments with function: unsigned'
    with pytest.raises(EvaluationError, match='with method: unsigned'):
        runtime.invoke(Unsigned(), [], {'x': 2}, name='unsigned', method=True)


def test_invoke_wraps_python_errors(runtime):
    def boom():
        raise ValueError('no')

    with pytest.raises(EvaluationError) as exc_info:
        runtime.invoke(boom)
    assert exc_info.value.reason == 'Function call failed: no'
    with pytest.raises(EvaluationError, match='not callable'):
        runtime.invoke(42)


def test_call_function_and_callbacks(runtime):
    assert runtime.call_function('STRLEN', ['abc']) == 3
    assert runtime.function_exists('\\strtoupper')
    assert runtime.call_callback('strtoupper', 'abc') == 'ABC'
    with pytest.raises(EvaluationError, match='Function not found: nope'):
        runtime.callable_for('nope')


def test_user_functions_shadow_nothing_after_reset(runtime):
    runtime.define_user_function('Greet', lambda: 'hi')
    assert runtime.lookup_function('greet')() == 'hi'
    runtime.define_constant('ANSWER', 42)
    runtime.reset()
    assert not runtime.function_exists('greet')
    assert not runtime.constant_exists('ANSWER')
    assert runtime.function_exists('strlen')


def test_constants(runtime):
    assert runtime.get_constant('PHP_EOL') == '\n'
    runtime.define_constant('ANSWER', 42)
    assert runtime.get_constant('\\ANSWER') == 42
    with pytest.raises(EvaluationError, match='already defined'):
        runtime.define_constant('ANSWER', 43)
    with pytest.raises(EvaluationError, match='Undefined constant "NOPE"'):
        runtime.get_constant('NOPE')


def _point_class():
    info = ClassInfo('Point')
    info.add_property('x', 0)
    info.add_property('secret', 's', ['private'])
    info.add_method(
        '__construct', lambda this, x=0: this.props.update(x=x), native=True
    )
    info.add_method('getX', lambda this: this.props['x'], native=True)
    return info


def test_declare_and_construct(runtime):
    runtime.declare(_point_class())
    point = runtime.construct('point', [3])
    assert point.class_name() == 'Point'
    assert runtime.call_method(point, 'getx') == 3
    assert runtime.get_property(point, 'x') == 3
    assert runtime.instanceof(point, 'POINT')
    assert format_value(point).startswith('Point@')

    with pytest.raises(EvaluationError, match='Cannot access private property'):
        runtime.get_property(point, 'secret')
    with pytest.raises(EvaluationError, match='Call to undefined method'):
        runtime.call_method(point, 'nope')
    with pytest.raises(EvaluationError, match="Class 'Point' is already defined"):
        runtime.declare(_point_class())


def test_declare_checks_the_hierarchy(runtime):
    child = ClassInfo('Child', parent_name='Missing')
    with pytest.raises(EvaluationError, match='non-existent class: Missing'):
        runtime.declare(child)
    assert not runtime.class_exists('Child')

    runtime.declare(ClassInfo('Base', modifiers=frozenset({'final'})))
    with pytest.raises(EvaluationError, match='cannot extend final class Base'):
        runtime.declare(ClassInfo('Sub', parent_name='Base'))


def test_abstract_methods_must_be_implemented(runtime):
    shape = ClassInfo('Shape', modifiers=frozenset({'abstract'}))
    shape.add_method('area', None, ['abstract'])
    runtime.declare(shape)
    with pytest.raises(EvaluationError, match='Cannot instantiate abstract class'):
        runtime.construct('Shape')
    with pytest.raises(EvaluationError, match='1 abstract method'):
        runtime.declare(ClassInfo('Square', parent_name='Shape'))


def test_backed_enum(runtime):
    suit = ClassInfo('Suit', kind='enum', backing_type='string',
                     case_values={'Hearts': 'H', 'Spades': 'S'})
    runtime.declare(suit)
    hearts = runtime.class_constant('Suit', 'Hearts')
    assert format_value(hearts) == 'Suit::Hearts'
    assert runtime.get_property(hearts, 'value') == 'H'
    assert runtime.call_static('Suit', 'from', ['S']).case_name() == 'Spades'
    assert runtime.call_static('Suit', 'tryFrom', ['X']) is None
    assert len(runtime.call_static('Suit', 'cases')) == 2
    assert runtime.instanceof(hearts, 'BackedEnum')
    with pytest.raises(EvaluationError, match='not a valid backing value'):
        runtime.call_static('Suit', 'from', ['X'])


def test_enum_case_values_must_match_the_backing(runtime):
    bad = ClassInfo('Bad', kind='enum', backing_type='int',
                    case_values={'A': 'a'})
    with pytest.raises(EvaluationError, match='does not match'):
        runtime.declare(bad)


def test_exceptions_are_classes(runtime):
    error = runtime.construct('RuntimeException', ['oops', 3])
    assert runtime.call_method(error, 'getMessage') == 'oops'
    assert runtime.call_method(error, 'getCode') == 3
    assert runtime.instanceof(error, 'Exception')
    assert not runtime.instanceof(error, 'Error')


def test_iterate(runtime):
    array = PhpArray.from_items([('a', 1), ('b', 2)])
    assert list(runtime.iterate(array)) == [('a', 1), ('b', 2)]
    gen = Generator((None, v) for v in 'xy')
    assert list(runtime.iterate(gen)) == [(0, 'x'), (1, 'y')]
    assert list(runtime.iterate(range(2))) == [(0, 0), (1, 1)]
    with pytest.raises(EvaluationError, match='must be of type array|object'):
        list(runtime.iterate(5))


def test_clone_copies_properties(runtime):
    runtime.declare(_point_class())
    point = runtime.construct('Point', [1])
    copied = runtime.clone(point)
    runtime.set_property(copied, 'x', 2)
    assert runtime.get_property(point, 'x') == 1
    assert copied.object_id() != point.object_id()


def test_import_python(runtime):
    imported = runtime.import_python('math/sqrt')
    assert imported == [('function', 'math.sqrt')]
    assert runtime.call_function('sqrt', [16]) == 4.0

    imported = runtime.import_python('collections/OrderedDict')
    assert imported == [('class', 'collections.OrderedDict')]
    assert runtime.class_exists('OrderedDict')


def test_import_python_results_become_arrays(runtime):
    runtime.import_python('builtins/sorted')
    result = runtime.call_function('sorted', [PhpArray.from_list([3, 1, 2])])
    assert result == PhpArray.from_list([1, 2, 3])


@pytest.mark.parametrize('spec, reason', [
    ('nope', 'Invalid import format'),
    ('no_such_module_here/f', "Module 'no_such_module_here' not found"),
    ('math/nothing', "Function 'nothing' not found in module 'math'"),
])
def test_import_python_errors(runtime, spec, reason):
    with pytest.raises(ReplError) as exc_info:
        runtime.import_python(spec)
    assert exc_info.value.reason.startswith(reason)
