import pytest

from phrepl.exceptions import EvaluationError, ParseError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.interp import evaluate_source
from phrepl.result import Alias, Bind, Declared, Import, Namespace, Silent, Value
from phrepl.runtime import HostRuntime
from phrepl.session import Session
from phrepl.values import PhpArray


@pytest.fixture
def output():
    return []


@pytest.fixture
def runtime(output):
    return HostRuntime(writer=output.append)


@pytest.fixture
def evaluate(runtime):
    def evaluate(text, session=None):
        return evaluate_source(text, session or Session.empty(), runtime)
    return evaluate


def succeed(result):
    return result.fold(lambda error: pytest.fail(str(error)), lambda r: r)


def fail(result):
    return result.fold(
        lambda error: error,
        lambda r: pytest.fail(f'expected a failure, got {r.value!r}'),
    )


@pytest.fixture
def value_of(evaluate):
    def value_of(text, session=None):
        return succeed(evaluate(text, session)).value
    return value_of


@pytest.fixture
def error_of(evaluate):
    def error_of(text, session=None):
        return fail(evaluate(text, session))
    return error_of


def php_list(*values):
    return PhpArray.from_list(values)


# Basics

def test_expression_is_a_value(evaluate):
    result = succeed(evaluate('1 + 1'))
    assert result.value == 2
    assert result.type == 'Int'
    assert result.binding == Value()
    assert result.assigned_variable is None


def test_assignment_binds_the_variable(evaluate):
    result = succeed(evaluate('$x = 5'))
    assert result.binding == Bind('$x')
    assert result.value == 5
    assert not result.side_assignments


def test_loop_reports_its_assignments(evaluate):
    result = succeed(evaluate('$i = 0; while ($i < 3) { $i++; }'))
    assert result.binding == Silent()
    assert result.side_assignments['$i'] == 3


def test_session_variables_are_visible(value_of):
    session = Session.empty().with_variable('$x', 4)
    assert value_of('$x * 2', session) == 8


def test_undefined_variable(error_of):
    error = error_of('$nope + 1')
    assert isinstance(error, EvaluationError)
    assert error.reason == 'Undefined variable $nope'


def test_parse_error(error_of):
    assert isinstance(error_of('$x = ;'), ParseError)


# Operators

@pytest.mark.parametrize('text, expected', [
    ('7 / 2', 3.5),
    ('6 / 3', 2),
    ('-7 % 3', -1),
    ('2 ** 3', 8),
    ("'5' + 3", 8),
    ("'a' . 1", 'a1'),
    ('1 <=> 2', -1),
    ("null ?? 'd'", 'd'),
    ("$undefined ?? 'd'", 'd'),
    ("0 ?: 'x'", 'x'),
    ("'1e1' == '10'", True),
    ("1 === '1'", False),
    ('PHP_INT_MAX + 1', float(2**63)),
])
def test_operators(value_of, text, expected):
    assert value_of(text) == expected


def test_integer_division_stays_int(evaluate):
    assert succeed(evaluate('6 / 3')).type == 'Int'
    assert succeed(evaluate('7 / 2')).type == 'Float'


@pytest.mark.parametrize('text, reason', [
    ('1 / 0', 'Division by zero'),
    ('1 % 0', 'Modulo by zero'),
])
def test_arithmetic_errors(error_of, text, reason):
    assert error_of(text).reason == reason


def test_non_numeric_operand_is_a_type_error(error_of):
    error = error_of("'abc' * 2")
    assert isinstance(error, ReplTypeError)
    assert error.reason == 'Unsupported operand types: string * int'


@pytest.mark.parametrize('start, expected', [
    ('a', 'b'),
    ('Az', 'Ba'),
    ('zz', 'aaa'),
    ('9', 10),
])
def test_string_increment(value_of, start, expected):
    assert value_of(f"$s = '{start}'; $s++; $s") == expected


@pytest.mark.parametrize('text, expected', [
    ("(int) '12abc'", 12),
    ('(string) 1.5', '1.5'),
    ("(bool) '0'", False),
    ('(array) 5', php_list(5)),
])
def test_casts(value_of, text, expected):
    assert value_of(text) == expected


def test_error_suppression(value_of):
    assert value_of("@$u['x']") is None


# Arrays

def test_append(value_of):
    assert value_of('$a = [1, 2]; $a[] = 3; $a') == php_list(1, 2, 3)


def test_nested_arrays_are_created_on_write(value_of):
    assert value_of("$m['x']['y'] = 1; $m['x']['y']") == 1


def test_undefined_index(error_of):
    assert error_of("$a = []; $a['k']").reason == 'Undefined array index: k'


def test_compound_assignment_on_an_element(value_of):
    assert value_of("$c = ['n' => 1]; $c['n'] += 5; $c['n']") == 6


@pytest.mark.parametrize('text, expected', [
    ('$i = 0; $a = [10, 20]; $a[$i++] += 1; [$i, $a]', php_list(1, php_list(11, 20))),
    ('$i = 0; $a = [10, 20]; $a[$i++]++; [$i, $a]', php_list(1, php_list(11, 20))),
    ('$i = 0; $a = [10, 20]; --$a[$i++]; [$i, $a]', php_list(1, php_list(9, 20))),
    ("$i = 0; $a = []; $a[$i++] ??= 'x'; [$i, $a]", php_list(1, php_list('x'))),
    ("$i = 0; $a = []; $a[$i++]['x'] = 1; [$i, $a]",
     php_list(1, php_list(PhpArray.from_items([('x', 1)])))),
    ('$i = 0; $a = [[1, 2], [3]]; unset($a[$i++][0]); [$i, $a]',
     php_list(1, php_list(PhpArray.from_items([(1, 2)]), php_list(3)))),
])
def test_element_keys_are_evaluated_once(value_of, text, expected):
    assert value_of(text) == expected


def test_nested_keys_are_evaluated_left_to_right(value_of):
    assert value_of('$i = 0; $m = []; $m[$i++][$i++] = 1; $m') == \
        PhpArray.from_items([(0, PhpArray.from_items([(1, 1)]))])


def test_array_access_offset_is_set_once(value_of):
    assert value_of('''
class Recorder implements ArrayAccess {
    public $keys = [];
    public function offsetExists($k) { return false; }
    public function offsetGet($k) { return null; }
    public function offsetSet($k, $v) { $this->keys[] = $k; }
    public function offsetUnset($k) {}
}
$o = new Recorder();
$i = 0;
$o[$i++] = 'a';
[$i, $o->keys]
''') == php_list(1, php_list(0))


def test_destructuring(value_of):
    assert value_of('[$p, $q] = [1, 2]; $p + $q') == 3
    assert value_of("['a' => $r] = ['a' => 9]; $r") == 9
    assert value_of('list(, $second) = [1, 2]; $second') == 2


def test_destructuring_needs_an_array(error_of):
    error = error_of('[$p] = 5')
    assert error.reason == 'list() requires an array on the right-hand side'


def test_assigning_through_a_destructure_binds_the_first_variable(evaluate):
    result = succeed(evaluate('[$p, $q] = [1, 2]'))
    assert result.binding == Bind('$p')
    assert result.side_assignments['$q'] == 2


# Control flow

def test_foreach_with_continue(value_of):
    assert value_of(
        '$t = 0; foreach ([1, 2, 3, 4] as $v) { if ($v == 3) { continue; } $t += $v; } $t'
    ) == 7


def test_foreach_with_keys(value_of):
    assert value_of(
        "$s = ''; foreach (['a' => 1, 'b' => 2] as $k => $v) { $s .= $k . $v; } $s"
    ) == 'a1b2'


def test_for_with_break(value_of):
    assert value_of(
        'for ($i = 0; $i < 10; $i++) { if ($i == 5) { break; } } $i'
    ) == 5


def test_break_out_of_two_loops(value_of):
    assert value_of(
        '$n = 0; foreach ([1, 2] as $a) { foreach ([1, 2] as $b) { $n++; break 2; } } $n'
    ) == 1


def test_do_while(value_of):
    assert value_of('$i = 0; do { $i++; } while ($i < 3); $i') == 3


def test_break_outside_a_loop(error_of):
    error = error_of('break;')
    assert error.reason == "'break' not in the 'loop' or 'switch' context"


def test_if_elseif_else(value_of):
    text = "$v = 5; if ($v < 3) { $r = 'small'; } elseif ($v < 10) { $r = 'mid'; } else { $r = 'big'; } $r"
    assert value_of(text) == 'mid'


def test_match(value_of, error_of):
    assert value_of("$v = 2; match ($v) { 1, 2 => 'low', default => 'high' }") == 'low'
    assert value_of("match (true) { 1 > 2 => 'no', default => 'yes' }") == 'yes'
    assert error_of("match (5) { 1 => 'a' }").reason == 'Unhandled match case 5'


# Functions

def test_default_argument(value_of):
    assert value_of('function f($x, $y = 10) { return $x + $y; } f(5)') == 15


def test_declaration_binds_the_function(evaluate):
    result = succeed(evaluate('function f($x) { return $x; }'))
    assert result.binding == Bind('$f')
    assert result.type == 'Function'


def test_arity_error(error_of):
    error = error_of('function g($a, $b) { return $a + $b; } g(1)')
    assert isinstance(error, ReplTypeError)
    assert error.reason == 'g() expects exactly 2 arguments, 1 given'


def test_functions_can_be_redefined_on_a_later_turn(evaluate, value_of):
    succeed(evaluate('function f() { return 1; }'))
    succeed(evaluate('function f() { return 2; }'))
    assert value_of('f()') == 2


def test_builtins_cannot_be_redeclared(error_of):
    error = error_of('function strlen($s) { return 0; }')
    assert error.reason == 'Cannot redeclare strlen()'


def test_unknown_function(error_of):
    assert error_of('nope()').reason == \
        'Function not found: nope (resolved to: nope)'


def test_recursion(value_of):
    assert value_of(
        'function fact($n) { return $n <= 1 ? 1 : $n * fact($n - 1); } fact(10)'
    ) == 3628800


def test_runaway_recursion_fails(evaluate):
    result = evaluate('function down($n) { return down($n + 1); } down(0)')
    assert not result.is_success()


def test_closures_capture_with_use(value_of):
    assert value_of(
        '$k = 3; $add = function($x) use ($k) { return $x + $k; }; $add(4)'
    ) == 7


def test_arrow_functions_capture_everything(value_of):
    assert value_of('$k = 3; $f = fn($x) => $x * $k; $f(5)') == 15


def test_closures_do_not_see_globals(error_of):
    error = error_of('$g = 10; $c = function() { return $g; }; $c()')
    assert error.reason == 'Undefined variable $g'


def test_named_functions_see_the_session(value_of):
    session = Session.empty().with_variable('$g', 10)
    assert value_of('function h() { return $g; } h()', session) == 10


def test_by_reference_parameters_write_back(value_of):
    assert value_of('function inc(&$n) { $n++; } $a = 1; inc($a); $a') == 2


def test_by_reference_builtins_write_back(evaluate, value_of):
    assert value_of('$a = [3, 1, 2]; sort($a); $a') == php_list(1, 2, 3)
    assert value_of("preg_match('/(\\d+)/', 'ab12', $m); $m[1]") == '12'
    result = succeed(evaluate('$a = [3, 1]; sort($a)'))
    assert result.value is True
    assert result.side_assignments['$a'] == php_list(1, 3)


def test_named_arguments(value_of, error_of):
    assert value_of(
        'function p($a, $b = 2) { return $a - $b; } p(b: 1, a: 5)'
    ) == 4
    assert error_of('function p2($a = 0) { return $a; } p2(z: 1)').reason == \
        'Unknown parameter: z'


def test_variadics_and_spread(value_of):
    assert value_of(
        'function s(...$xs) { return array_sum($xs); } s(1, 2, 3)'
    ) == 6
    assert value_of(
        'function add3($a, $b, $c) { return $a + $b + $c; } add3(...[1, 2, 3])'
    ) == 6


def test_parameter_types(evaluate, error_of):
    error = error_of("function t(int $x) { return $x; } t('a')")
    assert isinstance(error, ReplTypeError)
    assert error.reason == 't(): Argument #1 ($x) must be of type int, string given'

    result = succeed(evaluate('function fl(float $x) { return $x; } fl(2)'))
    assert result.value == 2.0
    assert result.type == 'Float'


def test_return_type(error_of):
    error = error_of("function r(): int { return 'x'; } r()")
    assert error.reason == 'r(): Return value must be of type int, string returned'


def test_first_class_callable(value_of):
    assert value_of("$f = strlen(...); $f('abcd')") == 4


def test_callbacks_can_be_user_functions(value_of):
    assert value_of(
        'function dbl($x) { return $x * 2; } array_map(dbl(...), [1, 2])'
    ) == php_list(2, 4)
    assert value_of("array_map(fn($x) => $x + 1, [1, 2])") == php_list(2, 3)


COUNTER = '''
class Counter { private $n = 3; }
$peek = function() { return $this->n; };
'''


@pytest.mark.parametrize('text', [
    "$b = Closure::bind($peek, new Counter(), 'Counter'); $b()",
    "$b = Closure::bind(closure: $peek, newThis: new Counter(), newScope: 'Counter'); $b()",
    "$b = $peek->bindTo(new Counter(), 'Counter'); $b()",
    '$peek->call(new Counter())',
])
def test_closures_can_be_rebound(value_of, text):
    assert value_of(COUNTER + text) == 3


def test_closure_from_callable(value_of):
    assert value_of(
        "$up = Closure::fromCallable('strtoupper'); $up('abc')"
    ) == 'ABC'


@pytest.mark.parametrize('text, reason', [
    ('Closure::bind()', 'Closure::bind() expects at least 2 arguments, 0 given'),
    ('Closure::bind(fn() => 1)', 'Closure::bind() expects at least 2 arguments, 1 given'),
    ('Closure::fromCallable()',
     'Closure::fromCallable() expects at least 1 argument, 0 given'),
    ("Closure::fromCallable('a', 'b')",
     'Closure::fromCallable() expects at most 1 argument, 2 given'),
    ('$f = fn() => 1; $f->call(5)',
     'Closure::call(): Argument #1 ($newThis) must be of type object'),
])
def test_closure_api_checks_its_arguments(error_of, text, reason):
    error = error_of(text)
    assert isinstance(error, ReplTypeError)
    assert error.reason == reason


@pytest.mark.parametrize('text, reason', [
    ('Closure::nope()', 'Call to undefined method Closure::nope()'),
    ('$f = fn() => 1; $f->nope()', 'Call to undefined method Closure::nope()'),
    ('Closure::bind(5, null)', 'Cannot bind value of type int'),
])
def test_closure_api_errors(error_of, text, reason):
    assert error_of(text).reason == reason


# Classes

POINT = '''
class Point {
    public function __construct(public int $x = 0, public int $y = 0) {}
    public function sum() { return $this->x + $this->y; }
    public static function origin() { return new static(); }
}
'''


def test_class_declaration(evaluate, value_of):
    result = succeed(evaluate(POINT))
    assert result.binding == Declared('class', 'Point')
    assert value_of('$p = new Point(1, 2); $p->sum()') == 3
    assert value_of('Point::origin()->x') == 0


def test_private_properties(error_of):
    error = error_of('class Safe { private $secret = 1; } (new Safe())->secret')
    assert 'Cannot access private property' in error.reason


def test_inheritance(value_of):
    assert value_of('''
class Animal {
    public function __construct(protected string $name) {}
    public function intro() { return "I am " . $this->name; }
}
class Dog extends Animal {
    public function intro() { return parent::intro() . " and I bark"; }
}
(new Dog('Rex'))->intro()
''') == 'I am Rex and I bark'


def test_static_members(value_of):
    assert value_of('''
class Counter {
    public static $count = 0;
    const STEP = 2;
    public static function bump() {
        static::$count += self::STEP;
        return static::$count;
    }
}
Counter::bump();
Counter::bump()
''') == 4


def test_interfaces(value_of):
    assert value_of('''
interface Shape { public function area(): float; }
class Sq implements Shape {
    public function __construct(private float $s) {}
    public function area(): float { return $this->s * $this->s; }
}
$q = new Sq(3);
[$q instanceof Shape, $q->area()]
''') == php_list(True, 9.0)


def test_enums(evaluate, value_of):
    result = succeed(evaluate(
        "enum Suit: string { case Hearts = 'H'; case Spades = 'S'; }"
    ))
    assert result.binding == Declared('enum', 'Suit')
    assert value_of(
        "[Suit::from('H') === Suit::Hearts, Suit::Spades->value, count(Suit::cases())]"
    ) == php_list(True, 'S', 2)


def test_throw_fails_the_turn(error_of):
    error = error_of("throw new RuntimeException('boom');")
    assert error.subject == 'RuntimeException'
    assert error.reason == 'boom'
    assert str(error) == 'Error: boom'


def test_type_errors_render_with_their_kind(error_of):
    assert str(error_of("'abc' * 2")) == \
        'TypeError: Unsupported operand types: string * int'


def test_anonymous_class(value_of):
    assert value_of('$o = new class { public $v = 5; }; $o->v') == 5


def test_to_string_is_used_by_interpolation(value_of):
    assert value_of('''
class Name { public function __toString() { return 'Ann'; } }
$n = new Name();
"hi $n"
''') == 'hi Ann'


def test_clone(value_of):
    assert value_of(
        'class Box { public $v = 1; } $a = new Box(); $b = clone $a; $b->v = 2; [$a->v, $b->v]'
    ) == php_list(1, 2)


def test_traits(value_of):
    assert value_of('''
trait Hello { public function hello() { return 'hello ' . $this->who(); } }
class World { use Hello; public function who() { return 'world'; } }
(new World())->hello()
''') == 'hello world'


def test_iterator_aggregate(value_of):
    assert value_of('''
class Bag implements IteratorAggregate {
    public function getIterator(): Iterator { yield 1; yield 2; }
}
$t = 0;
foreach (new Bag() as $v) { $t += $v; }
$t
''') == 3


# Generators

def test_generator_return_value(value_of):
    assert value_of('''
function gen() { for ($i = 1; $i <= 3; $i++) { yield $i; } return 10; }
$g = gen();
$sum = 0;
foreach ($g as $v) { $sum += $v; }
[$sum, $g->getReturn()]
''') == php_list(6, 10)


def test_generator_keys(value_of):
    assert value_of(
        "function kv() { yield 'a' => 1; yield 'b' => 2; } iterator_to_array(kv())"
    ) == PhpArray.from_items([('a', 1), ('b', 2)])


def test_generator_send(value_of):
    assert value_of('''
function acc() { $total = 0; while (true) { $x = yield $total; $total += $x; } }
$a = acc();
$a->current();
$a->send(5);
$a->send(3)
''') == 8


def test_yield_from(value_of):
    assert value_of('''
function inner() { yield 1; yield 2; return 3; }
function outer() { $r = yield from inner(); yield $r; }
iterator_to_array(outer(), false)
''') == php_list(1, 2, 3)


# Scope and output

def test_compact_and_extract(value_of):
    assert value_of("$a = 1; $b = 2; compact('a', 'b')") == \
        PhpArray.from_items([('a', 1), ('b', 2)])
    assert value_of("extract(['p' => 7]); $p") == 7


def test_unset_removes_session_variables(evaluate):
    session = Session.empty().with_variable('$x', 1)
    result = succeed(evaluate('unset($x)', session))
    assert result.binding == Silent()
    assert result.removed_variables == ('$x',)


def test_echo_is_a_side_effect(evaluate, output):
    result = succeed(evaluate('echo "hi", 1;'))
    assert output == ['hi', '1']
    assert result.is_side_effect_only


def test_print_r_returning_its_text_is_a_value(evaluate, output):
    result = succeed(evaluate('print_r([1], true)'))
    assert not result.is_side_effect_only
    assert result.value.startswith('Array')
    assert output == []

    result = succeed(evaluate('print_r([1])'))
    assert result.is_side_effect_only
    assert ''.join(output).startswith('Array')


# Namespaces and constants

def test_namespace_and_use_bindings(evaluate):
    assert succeed(evaluate('namespace App;')).binding == Namespace('App')
    result = succeed(evaluate('use Foo\\Bar as Baz;'))
    assert result.binding == Import((Alias('Baz', 'Foo\\Bar'),))


def test_global_namespace_block_clears_the_namespace(evaluate):
    session = Session.empty().with_namespace('App')
    result = succeed(evaluate('namespace { function top() { return 1; } }', session))
    assert result.binding == Namespace(None)
    assert succeed(evaluate('\\top()')).value == 1


def test_namespaced_functions(evaluate, value_of):
    session = Session.empty().with_namespace('App')
    result = succeed(evaluate('function hi() { return 1; }', session))
    assert result.binding == Bind('$hi')
    assert value_of('hi()', session) == 1
    assert value_of('\\App\\hi()') == 1
    # builtins are found from inside a namespace
    assert value_of("strlen('ab')", session) == 2


def test_constants(value_of, error_of):
    assert value_of('const ANSWER = 42; ANSWER') == 42
    assert value_of("define('X', 1); X") == 1
    assert error_of('NOPE').reason == 'Undefined constant "NOPE"'


def test_magic_constants(value_of):
    assert value_of('function name() { return __FUNCTION__; } name()') == 'name'
    assert value_of('__NAMESPACE__', Session.empty().with_namespace('App')) == 'App'
