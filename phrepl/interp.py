"""
phrepl.interp

The evaluator. exec_stmt and eval_expr take a node and a Context and give
back (value, Context). Nothing is updated in place: every variable a
sub-expression binds is threaded into the next one through the returned
Context, and the top level turns the final Context into an
EvaluationResult for the driver.
"""
import copy
import dataclasses
import inspect
import keyword
import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from phrepl import ast
from phrepl.builtins import OUTPUT_FUNCTIONS, Updated
from phrepl.data import OrderedMap
from phrepl.exceptions import EvaluationError, ReplError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.parser import parse_result
from phrepl.result import (
    Alias, Bind, Declared, EvaluationResult, Import, Namespace, Silent, Value,
    attempt,
)
from phrepl.runtime import ClassInfo, HostRuntime, Instance, Invocable
from phrepl.session import Session
from phrepl.values import (
    Generator, PhpArray, compare, debug_type, format_value, is_callable_value,
    is_numeric, is_object, loose_equals, normalize_key, strict_equals,
    to_bool, to_float, to_int, to_number, to_string, type_of,
)

log = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class Context:
    runtime: HostRuntime
    session: Session
    variables: OrderedMap = field(default_factory=OrderedMap.empty)  # '$name' -> value
    globals: Optional[OrderedMap] = None  # None at the top level
    this: Any = None
    cls: Optional[ClassInfo] = None
    static_cls: Optional[ClassInfo] = None
    fn_name: str = ''
    declared: frozenset = frozenset()  # functions this fragment declared

    @property
    def visible_globals(self):
        return self.variables if self.globals is None else self.globals


def _set_variable(ctx, name, value):
    return dataclasses.replace(ctx, variables=ctx.variables.assoc(name, value))


def _read_variable(name, ctx):
    if name not in ctx.variables:
        raise EvaluationError('Variable', f'Undefined variable {name}')
    return ctx.variables[name]


# ----------------------------
#  Non-local control flow
# ----------------------------
# return, break and continue unwind through exceptions, carrying the
# Context at the point they were raised.

class ReturnSignal(Exception):
    def __init__(self, value, ctx):
        super().__init__(value)
        self.value = value
        self.ctx = ctx


class _LoopSignal(Exception):
    keyword = ''

    def __init__(self, levels, ctx):
        super().__init__(levels)
        self.levels = levels
        self.ctx = ctx


class BreakSignal(_LoopSignal):
    keyword = 'break'


class ContinueSignal(_LoopSignal):
    keyword = 'continue'


def _outside_loop(signal):
    return EvaluationError(
        signal.keyword.capitalize(),
        f"'{signal.keyword}' not in the 'loop' or 'switch' context"
    )


def _caught(signal):
    "(stop, ctx) for a loop that caught a break or continue"
    if signal.levels > 1:
        raise type(signal)(signal.levels - 1, signal.ctx)
    return isinstance(signal, BreakSignal), signal.ctx


# -------------
#  Functions
# -------------

_SCALAR_TYPES = {
    'int': lambda v: isinstance(v, int) and not isinstance(v, bool),
    'float': lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    'string': lambda v: isinstance(v, str),
    'bool': lambda v: isinstance(v, bool),
    'false': lambda v: v is False,
    'true': lambda v: v is True,
    'array': lambda v: isinstance(v, PhpArray),
    'null': lambda v: v is None,
    'void': lambda v: v is None,
    'mixed': lambda v: True,
    'never': lambda v: False,
}
_BUILTIN_TYPE_NAMES = frozenset(_SCALAR_TYPES) | {
    'callable', 'iterable', 'object', 'self', 'static', 'parent', 'closure',
    'generator',
}


def _type_names(type_node):
    match type_node:
        case ast.NamedType(name):
            return [name]
        case ast.NullableType(inner):
            return _type_names(inner)
        case ast.UnionType(types) | ast.IntersectionType(types):
            return [n for t in types for n in _type_names(t)]
    return []


def _relative_class(name, ctx):
    match name.lower():
        case 'self':
            return ctx.cls
        case 'static':
            return ctx.static_cls or ctx.cls
        case 'parent':
            return ctx.cls.parent if ctx.cls is not None else None
    return None


def matches_type(value, type_node, ctx) -> bool:
    rt = ctx.runtime
    match type_node:
        case ast.NullableType(inner):
            return value is None or matches_type(value, inner, ctx)
        case ast.UnionType(types):
            return any(matches_type(value, t, ctx) for t in types)
        case ast.IntersectionType(types):
            return all(matches_type(value, t, ctx) for t in types)
        case ast.NamedType(name):
            lowered = name.lower()
            if lowered in _SCALAR_TYPES:
                return _SCALAR_TYPES[lowered](value)
            match lowered:
                case 'callable':
                    try:
                        rt.callable_for(value, ctx.cls)
                    except ReplError:
                        return False
                    return True
                case 'iterable':
                    return (isinstance(value, (PhpArray, Generator))
                            or rt.instanceof(value, 'Traversable'))
                case 'object':
                    return is_object(value)
                case 'self' | 'static' | 'parent':
                    cls = _relative_class(lowered, ctx)
                    return cls is not None and rt.instanceof(value, cls.name)
            return rt.instanceof(value, _resolve_class_name(name, ctx))
    return True


def _coerce_to_type(value, type_node):
    "an int passed where only float is accepted becomes a float"
    if isinstance(value, int) and not isinstance(value, bool):
        names = {n.lower() for n in _type_names(type_node)}
        if 'float' in names and not names & {'int', 'mixed'}:
            return float(value)
    return value


def _check_types_exist(params, return_type, ctx, own=()):
    "class names in a signature must name declared types"
    own = {n.lower() for n in own}
    nodes = [p.type for p in params if p.type is not None]
    if return_type is not None:
        nodes.append(return_type)
    for node in nodes:
        for name in _type_names(node):
            lowered = name.lower()
            if lowered in _BUILTIN_TYPE_NAMES or lowered.lstrip('\\') in own:
                continue
            if not ctx.runtime.class_exists(_resolve_class_name(name, ctx)):
                raise EvaluationError('Function', f"Class '{name}' not found")


class Function(Invocable):
    """
    A function written in the REPL language: a named function, a closure,
    an arrow function or a method. The Context it holds is the one it was
    defined in; each call runs the body in a copy of it holding the
    captured variables and the bound arguments.
    """

    def __init__(self, name, params, body, ctx, *, captured=None,
                 return_type=None, arrow=False, named=False, fn_name=None):
        self.name = name
        self.fn_name = fn_name or name
        self.params = params
        self.body = body  # statements, or an expression for arrow functions
        self.ctx = ctx
        self.captured = captured if captured is not None else OrderedMap.empty()
        self.return_type = return_type
        self.arrow = arrow
        self.named = named
        self.is_generator = (
            not arrow and body is not None and ast.body_contains_yield(body)
        )

    def __repr__(self):
        return f'<Function({self.name}) object at {hex(id(self))}>'

    @property
    def __signature__(self):
        optional_from = len(self.params)
        for i in reversed(range(len(self.params))):
            p = self.params[i]
            if p.default is None and not p.variadic:
                break
            optional_from = i
        parameters = []
        for i, p in enumerate(self.params):
            name = p.name + '_' if keyword.iskeyword(p.name) else p.name
            if p.variadic:
                parameters.append(
                    inspect.Parameter(name, inspect.Parameter.VAR_POSITIONAL)
                )
            else:
                parameters.append(inspect.Parameter(
                    name, inspect.Parameter.POSITIONAL_OR_KEYWORD,
                    default=None if i >= optional_from else inspect.Parameter.empty,
                ))
        return inspect.Signature(parameters)

    def seeing(self, globals_):
        "this function with the globals of the call site visible"
        fn = copy.copy(self)
        fn.ctx = dataclasses.replace(self.ctx, globals=globals_)
        return fn

    def bind(self, this, cls, static_cls):
        fn = copy.copy(self)
        fn.ctx = dataclasses.replace(
            self.ctx, this=this, cls=cls, static_cls=static_cls
        )
        if cls is not None and '::' in self.name:
            fn.name = f'{cls.name}::{self.fn_name}'
        return fn

    # Calling

    def call(self, args, named):
        if self.body is None:
            raise EvaluationError(
                'MethodCall', f'Cannot call abstract method {self.name}()'
            )
        ctx = self._enter(args, named)
        if self.is_generator:
            return Generator(self._generate(ctx))
        value, ctx = self._run(ctx)
        value = self._check_return(value, ctx)
        refs = {
            i: ctx.variables.get('$' + p.name)
            for i, p in enumerate(self.params) if p.by_ref and not p.variadic
        }
        if refs:
            return Updated(value, refs)
        return value

    def _enter(self, args, named):
        ctx = self.ctx
        variables = self.captured
        if self.named and ctx.globals is not None:
            variables = variables.update(ctx.globals)
        bound = self._bind_arguments(list(args), dict(named))
        body_ctx = dataclasses.replace(
            ctx,
            variables=variables.update(bound),
            globals=ctx.visible_globals,
            fn_name=self.fn_name,
            declared=frozenset(),
        )
        this = ctx.this
        if this is not None:
            for p in self.params:
                if p.modifiers:
                    ctx.runtime.set_property(
                        this, p.name, bound['$' + p.name], scope=ctx.cls
                    )
        return body_ctx

    def _bind_arguments(self, args, named):
        given = len(args) + len(named)
        bound = {}
        for i, p in enumerate(self.params):
            key = '$' + p.name
            if p.variadic:
                rest = PhpArray.from_list(args[i:])
                for k, v in named.items():
                    rest = rest.assoc(k, v)
                bound[key] = rest
                return bound
            if i < len(args):
                if p.name in named:
                    raise EvaluationError(
                        self.name,
                        f'Named parameter ${p.name} overwrites previous argument'
                    )
                value = args[i]
            elif p.name in named:
                value = named.pop(p.name)
            elif p.default is not None:
                defining = dataclasses.replace(self.ctx, variables=self.captured)
                bound[key], _ = eval_expr(p.default, defining)
                continue
            else:
                raise self._arity_error(given)
            bound[key] = self._check_argument(i, p, value)
        if len(args) > len(self.params):
            # extra positional arguments are ignored, as in PHP
            log.debug('%s() ignored %d extra arguments', self.name,
                      len(args) - len(self.params))
        if named:
            raise EvaluationError(
                self.name, f'Unknown parameter: {next(iter(named))}'
            )
        return bound

    def _arity_error(self, given):
        required = sum(
            1 for p in self.params if p.default is None and not p.variadic
        )
        bound = 'exactly' if required == len(self.params) else 'at least'
        plural = '' if required == 1 else 's'
        return ReplTypeError(
            self.name,
            f'{self.name}() expects {bound} {required} argument{plural}, '
            f'{given} given'
        )

    def _check_argument(self, i, p, value):
        if p.type is None:
            return value
        if not matches_type(value, p.type, self.ctx):
            raise ReplTypeError(
                self.name,
                f'{self.name}(): Argument #{i + 1} (${p.name}) must be of '
                f'type {p.type}, {debug_type(value)} given'
            )
        return _coerce_to_type(value, p.type)

    def _run(self, ctx):
        if self.arrow:
            return eval_expr(self.body, ctx)
        try:
            _, ctx = exec_block(self.body, ctx)
        except ReturnSignal as r:
            return r.value, r.ctx
        except _LoopSignal as s:
            raise _outside_loop(s) from None
        return None, ctx

    def _generate(self, ctx):
        try:
            for stmt in self.body:
                _, ctx = yield from gen_stmt(stmt, ctx)
        except ReturnSignal as r:
            return r.value
        except _LoopSignal as s:
            raise _outside_loop(s) from None
        return None

    def _check_return(self, value, ctx):
        rtype = self.return_type
        if rtype is None:
            return value
        if isinstance(rtype, ast.NamedType) and rtype.name.lower() == 'void':
            return None
        if not matches_type(value, rtype, ctx):
            raise ReplTypeError(
                self.name,
                f'{self.name}(): Return value must be of type {rtype}, '
                f'{debug_type(value)} returned'
            )
        return _coerce_to_type(value, rtype)


def _function(name, params, body, ctx, **kwargs):
    "a Function defined in ctx"
    definition = dataclasses.replace(
        ctx, variables=OrderedMap.empty(), globals=ctx.visible_globals,
        declared=frozenset(),
    )
    return Function(name, params, body, definition, **kwargs)


def _with_call_site(fn, ctx):
    if isinstance(fn, Function) and fn.named:
        return fn.seeing(ctx.visible_globals)
    return fn


def _make_closure(node, ctx):
    captured = OrderedMap.empty()
    for use in node.uses:
        captured = captured.assoc('$' + use.name, ctx.variables.get('$' + use.name))
    if node.static:
        ctx = dataclasses.replace(ctx, this=None)
    return _function(
        '{closure}', node.params, node.body, ctx, captured=captured,
        return_type=node.return_type,
    )


def _make_arrow_function(node, ctx):
    if node.static:
        ctx = dataclasses.replace(ctx, this=None)
    return _function(
        '{closure}', node.params, node.expr, ctx, captured=ctx.variables,
        return_type=node.return_type, arrow=True,
    )


# ------------
#  Names
# ------------

def _qualify(name, ctx):
    "a declared name inside the current namespace"
    namespace = ctx.session.current_namespace
    return f'{namespace}\\{name}' if namespace else name


def _resolve_class_name(name, ctx):
    """
    A class name resolved through aliases and the namespace. Unqualified
    names fall back to the global class of that name, which keeps builtin
    interfaces usable inside a namespace.
    """
    resolved = ctx.session.resolve_name(name)
    rt = ctx.runtime
    if (resolved != name and not name.startswith('\\')
            and not rt.class_exists(resolved) and rt.class_exists(name)):
        return name
    return resolved


def _find_class(name, ctx):
    resolved = _resolve_class_name(name, ctx)
    info = ctx.runtime.types.get(resolved)
    if info is None:
        raise EvaluationError('Class', f'Class "{resolved}" not found')
    return info


def _class_ref(node, ctx):
    "(ClassInfo, ctx) for the class part of C::x, new C and friends"
    if isinstance(node, ast.ConstFetch):
        lowered = node.name.lower()
        if lowered in ('self', 'static', 'parent'):
            cls = _relative_class(lowered, ctx)
            if cls is None:
                if lowered == 'parent' and ctx.cls is not None:
                    raise EvaluationError(
                        'Class',
                        'Cannot use "parent" when current class scope has no parent'
                    )
                raise EvaluationError(
                    'Class', f'Cannot use "{lowered}" when no class scope is active'
                )
            return cls, ctx
        return _find_class(node.name, ctx), ctx
    value, ctx = eval_expr(node, ctx)
    match value:
        case Instance():
            return value.info, ctx
        case str():
            return _find_class('\\' + value.lstrip('\\'), ctx), ctx
    raise EvaluationError(
        'Class', f'Cannot use value of type {debug_type(value)} as class name'
    )


def _member_name(name, ctx):
    if isinstance(name, str):
        return name, ctx
    value, ctx = eval_expr(name, ctx)
    return to_string(value), ctx


def _constant(name, ctx):
    rt = ctx.runtime
    resolved = ctx.session.resolve_name(name)
    for candidate in (resolved, name.lstrip('\\')):
        if rt.constant_exists(candidate):
            return rt.get_constant(candidate)
    raise EvaluationError('ConstFetch', f'Undefined constant "{name}"')


def _magic_constant(name, line, ctx):
    match name:
        case '__LINE__':
            return line
        case '__FILE__':
            return 'php://stdin'
        case '__DIR__':
            return os.getcwd()
        case '__FUNCTION__':
            return ctx.fn_name
        case '__CLASS__':
            return ctx.cls.name if ctx.cls is not None else ''
        case '__METHOD__':
            if ctx.cls is not None and ctx.fn_name and ctx.fn_name != '{closure}':
                return f'{ctx.cls.name}::{ctx.fn_name}'
            return ctx.fn_name
        case '__NAMESPACE__':
            return ctx.session.current_namespace or ''
    raise EvaluationError('MagicConst', f'Unknown magic constant {name}')


# -------------
#  Operators
# -------------

_LEADING_NUMBER = re.compile(r'[ \t\n\r\v\f]*[+-]?(\d|\.\d)')
_INT_MIN, _INT_MAX = -2**63, 2**63 - 1


def _int_or_float(n):
    "integers that overflow 64 bits become floats"
    if isinstance(n, int) and not _INT_MIN <= n <= _INT_MAX:
        return float(n)
    return n


def _wrap64(n):
    n &= 2**64 - 1
    return n - 2**64 if n > _INT_MAX else n


def _numeric_operands(op, a, b):
    for v in (a, b):
        if (isinstance(v, PhpArray) or is_object(v)
                or (isinstance(v, str) and not _LEADING_NUMBER.match(v))):
            raise ReplTypeError(
                'BinaryOp',
                f'Unsupported operand types: {debug_type(a)} {op} {debug_type(b)}'
            )
    return to_number(a, op), to_number(b, op)


def _power(x, y):
    if isinstance(x, int) and isinstance(y, int) and y >= 0:
        if abs(x) > 1 and y * math.log2(abs(x)) > 64:
            return _float_power(float(x), y)
        return _int_or_float(x ** y)
    return _float_power(float(x), y)


def _float_power(x, y):
    if x < 0 and not float(y).is_integer():
        return math.nan
    try:
        return x ** y
    except ZeroDivisionError:
        return math.inf
    except OverflowError:
        return math.inf if x > 0 or float(y) % 2 == 0 else -math.inf


def _arithmetic(op, a, b):
    if op == '+' and isinstance(a, PhpArray) and isinstance(b, PhpArray):
        result = a
        for k, v in b.items():
            if k not in result:
                result = result.assoc(k, v)
        return result
    x, y = _numeric_operands(op, a, b)
    match op:
        case '+':
            return _int_or_float(x + y)
        case '-':
            return _int_or_float(x - y)
        case '*':
            return _int_or_float(x * y)
        case '/':
            if y == 0:
                raise EvaluationError('BinaryOp', 'Division by zero')
            if isinstance(x, int) and isinstance(y, int) and x % y == 0:
                return _int_or_float(x // y)
            return x / y
        case '%':
            x, y = to_int(x), to_int(y)
            if y == 0:
                raise EvaluationError('BinaryOp', 'Modulo by zero')
            r = abs(x) % abs(y)
            return -r if x < 0 else r
        case '**':
            return _power(x, y)
    raise EvaluationError('BinaryOp', f'Unsupported operator {op}')


def _bitwise(op, a, b):
    if isinstance(a, str) and isinstance(b, str) and op in '&|^':
        combine = {
            '&': lambda x, y: x & y, '|': lambda x, y: x | y,
            '^': lambda x, y: x ^ y,
        }[op]
        if op == '|':
            a, b = a.ljust(len(b), '\0'), b.ljust(len(a), '\0')
        return ''.join(chr(combine(ord(x), ord(y))) for x, y in zip(a, b))
    x, y = _numeric_operands(op, a, b)
    x, y = to_int(x), to_int(y)
    match op:
        case '&':
            return x & y
        case '|':
            return x | y
        case '^':
            return x ^ y
        case '<<' | '>>':
            if y < 0:
                raise EvaluationError('BinaryOp', 'Bit shift by negative number')
            if op == '<<':
                return _wrap64(x << y) if y < 64 else 0
            return x >> min(y, 63)
    raise EvaluationError('BinaryOp', f'Unsupported operator {op}')


def binary_op(op, a, b):
    "the operators that evaluate both sides"
    match op:
        case '.':
            return to_string(a) + to_string(b)
        case '==':
            return loose_equals(a, b)
        case '!=' | '<>':
            return not loose_equals(a, b)
        case '===':
            return strict_equals(a, b)
        case '!==':
            return not strict_equals(a, b)
        case '<':
            return compare(a, b) < 0
        case '<=':
            return compare(a, b) <= 0
        case '>':
            return compare(a, b) > 0
        case '>=':
            return compare(a, b) >= 0
        case '<=>':
            return compare(a, b)
        case 'xor':
            return to_bool(a) != to_bool(b)
        case '+' | '-' | '*' | '/' | '%' | '**':
            return _arithmetic(op, a, b)
        case '&' | '|' | '^' | '<<' | '>>':
            return _bitwise(op, a, b)
    raise EvaluationError('BinaryOp', f'Unsupported operator {op}')


def unary_op(op, value):
    match op:
        case '!':
            return not to_bool(value)
        case '-':
            return _arithmetic('*', value, -1)
        case '+':
            return _arithmetic('*', value, 1)
        case '~':
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return ~to_int(value)
            raise ReplTypeError(
                'UnaryOp',
                f'Cannot perform bitwise not on {debug_type(value)}'
            )
    raise EvaluationError('UnaryOp', f'Unsupported operator {op}')


def _increment_string(s):
    chars = list(s)
    for i in reversed(range(len(chars))):
        c = chars[i]
        if c == 'z':
            chars[i] = 'a'
        elif c == 'Z':
            chars[i] = 'A'
        elif c == '9':
            chars[i] = '0'
        elif c.isascii() and c.isalnum():
            chars[i] = chr(ord(c) + 1)
            return ''.join(chars)
        else:
            return ''.join(chars)
    first = s[0]
    prefix = 'a' if first == 'z' else 'A' if first == 'Z' else '1'
    return prefix + ''.join(chars)


def increment(value):
    match value:
        case None:
            return 1
        case bool():
            return value
        case int():
            return _int_or_float(value + 1)
        case float():
            return value + 1
        case '':
            return '1'
        case str() if is_numeric(value):
            return _int_or_float(to_number(value) + 1)
        case str():
            return _increment_string(value)
    raise ReplTypeError('IncDec', f'Cannot increment {debug_type(value)}')


def decrement(value):
    match value:
        case None | bool():
            return value
        case int():
            return _int_or_float(value - 1)
        case float():
            return value - 1
        case '':
            return -1
        case str() if is_numeric(value):
            return _int_or_float(to_number(value) - 1)
        case str():
            return value
    raise ReplTypeError('IncDec', f'Cannot decrement {debug_type(value)}')


def _cast(type_name, value, ctx):
    match type_name:
        case 'int':
            return to_int(value)
        case 'float':
            return to_float(value)
        case 'string':
            return to_string(value)
        case 'bool':
            return to_bool(value)
        case 'unset':
            return None
        case 'array':
            match value:
                case PhpArray():
                    return value
                case None:
                    return PhpArray.empty()
                case Instance():
                    return PhpArray.from_items(
                        (name, v) for (name, v, _, _) in value.properties()
                    )
            return PhpArray.from_list([value])
        case 'object':
            if is_object(value):
                return value
            obj = ctx.runtime.construct('stdClass')
            if isinstance(value, PhpArray):
                for k, v in value.items():
                    obj.props[str(k)] = v
            elif value is not None:
                obj.props['scalar'] = value
            return obj
    raise EvaluationError('Cast', f'Unsupported cast ({type_name})')


# --------------
#  Containers
# --------------

def _is_array_access(value):
    return isinstance(value, Instance) and value.info.is_subclass_of('ArrayAccess')


def _is_unpackable(value, rt):
    return (isinstance(value, (PhpArray, Generator))
            or rt.instanceof(value, 'Traversable'))


def _read_index(container, key, ctx):
    match container:
        case PhpArray():
            k = normalize_key(key)
            if k not in container:
                raise EvaluationError('Index', f'Undefined array index: {to_string(k)}')
            return container[k]
        case str():
            if isinstance(key, str) and not is_numeric(key):
                raise EvaluationError(
                    'Index', f'Cannot access offset of type {debug_type(key)} on string'
                )
            i = to_int(key)
            position = i + len(container) if i < 0 else i
            if not 0 <= position < len(container):
                raise EvaluationError('Index', f'Uninitialized string offset {i}')
            return container[position]
    if _is_array_access(container):
        return ctx.runtime.call_method(container, 'offsetGet', [key], scope=ctx.cls)
    raise EvaluationError(
        'Index',
        f'Cannot use array access on non-array type: {debug_type(container)}'
    )


def _array_literal(items, ctx):
    result = PhpArray.empty()
    for item in items:
        if item is None:
            raise EvaluationError('Array', 'Cannot use empty array elements in arrays')
        if item.spread:
            value, ctx = eval_expr(item.value, ctx)
            if not _is_unpackable(value, ctx.runtime):
                raise EvaluationError(
                    'Array', 'Only arrays and Traversables can be unpacked'
                )
            for k, v in ctx.runtime.iterate(value):
                result = result.assoc(k, v) if isinstance(k, str) else result.append(v)
            continue
        if item.key is None:
            value, ctx = eval_expr(item.value, ctx)
            result = result.append(value)
        else:
            key, ctx = eval_expr(item.key, ctx)
            value, ctx = eval_expr(item.value, ctx)
            result = result.assoc(key, value)
    return result, ctx


def lookup(node, ctx):
    """
    eval_expr for ??, isset and empty: undefined variables, keys and
    properties read as null instead of failing.
    """
    rt = ctx.runtime
    match node:
        case ast.Variable(name) if name != 'this':
            return ctx.variables.get('$' + name), ctx
        case ast.VariableVariable(name_expr):
            name, ctx = eval_expr(name_expr, ctx)
            return ctx.variables.get('$' + to_string(name)), ctx
        case ast.Index(obj, index) if index is not None:
            container, ctx = lookup(obj, ctx)
            key, ctx = eval_expr(index, ctx)
            return _offset_get(container, key, ctx), ctx
        case ast.PropertyFetch(obj, name, _):
            target, ctx = lookup(obj, ctx)
            name, ctx = _member_name(name, ctx)
            if not is_object(target) or not rt.has_property(target, name):
                return None, ctx
            return rt.get_property(target, name, scope=ctx.cls), ctx
        case ast.StaticPropertyFetch() | ast.ClassConstFetch():
            try:
                return eval_expr(node, ctx)
            except EvaluationError:
                return None, ctx
    return eval_expr(node, ctx)


def _offset_get(container, key, ctx):
    "container[key], or null when there is no such offset"
    rt = ctx.runtime
    match container:
        case PhpArray():
            return container.get(key)
        case str():
            i = to_int(key) if is_numeric(key) else len(container)
            position = i + len(container) if i < 0 else i
            if 0 <= position < len(container):
                return container[position]
            return None
    if _is_array_access(container):
        if to_bool(rt.call_method(container, 'offsetExists', [key],
                                  scope=ctx.cls)):
            return rt.call_method(container, 'offsetGet', [key], scope=ctx.cls)
    return None


# --------------
#  Assignment
# --------------

def _index_path(node, ctx):
    """
    Split a chain of index expressions into its base node and its keys.
    The keys are evaluated once, left to right. An append (`$a[]`) has
    the key None.
    """
    indexes = []
    while isinstance(node, ast.Index):
        indexes.append(node.index)
        node = node.obj
    keys = []
    for index in reversed(indexes):
        key = None
        if index is not None:
            key, ctx = eval_expr(index, ctx)
        keys.append(key)
    return node, tuple(keys), ctx


def _read_path(base, keys, ctx):
    value, ctx = lookup(base, ctx)
    for key in keys:
        if key is None:
            return None, ctx
        value = _offset_get(value, key, ctx)
    return value, ctx


def _write_path(base, keys, value, ctx):
    "store value at base[k1][k2]..., rebuilding every level above it"
    if not keys:
        return assign_to(base, value, ctx)
    *outer, key = keys
    container, ctx = _read_path(base, outer, ctx)
    if _is_array_access(container):
        ctx.runtime.call_method(container, 'offsetSet', [key, value], scope=ctx.cls)
        return ctx
    if container is None:
        container = PhpArray.empty()
    if isinstance(container, str):
        raise EvaluationError('Assign', 'Cannot assign to an offset of a string')
    if not isinstance(container, PhpArray):
        raise EvaluationError(
            'Assign',
            f'Cannot use a scalar value of type {debug_type(container)} as an array'
        )
    updated = container.append(value) if key is None else container.assoc(key, value)
    return _write_path(base, outer, updated, ctx)

def _is_target(node):
    return isinstance(node, (
        ast.Variable, ast.VariableVariable, ast.Index, ast.PropertyFetch,
        ast.StaticPropertyFetch, ast.ArrayLiteral,
    ))


def assign_to(target, value, ctx):
    "the Context after storing value into target"
    rt = ctx.runtime
    match target:
        case ast.Variable('this'):
            raise EvaluationError('Assign', 'Cannot re-assign $this')
        case ast.Variable(name):
            return _set_variable(ctx, '$' + name, value)
        case ast.VariableVariable(name_expr):
            name, ctx = eval_expr(name_expr, ctx)
            return _set_variable(ctx, '$' + to_string(name), value)
        case ast.Index():
            base, keys, ctx = _index_path(target, ctx)
            return _write_path(base, keys, value, ctx)
        case ast.PropertyFetch(obj, name, nullsafe):
            if nullsafe:
                raise EvaluationError(
                    'Assign', "Can't use nullsafe operator in write context"
                )
            target_obj, ctx = eval_expr(obj, ctx)
            name, ctx = _member_name(name, ctx)
            rt.set_property(target_obj, name, value, scope=ctx.cls)
            return ctx
        case ast.StaticPropertyFetch(cls, name):
            info, ctx = _class_ref(cls, ctx)
            rt.set_static_property(info, name, value, scope=ctx.cls)
            return ctx
        case ast.ArrayLiteral(items, _):
            return _destructure(items, value, ctx)
    raise EvaluationError('Assign', f'Cannot assign to {target.kind}')


def _destructure(items, value, ctx):
    if not isinstance(value, PhpArray):
        raise EvaluationError(
            'Assign', 'list() requires an array on the right-hand side'
        )
    position = 0
    for item in items:
        if item is None:
            position += 1
            continue
        if item.key is not None:
            key, ctx = eval_expr(item.key, ctx)
        else:
            key = position
            position += 1
        if not _is_target(item.value):
            raise EvaluationError('Assign', 'list() items must be variables')
        ctx = assign_to(item.value, value.get(key), ctx)
    return ctx


def _unset(node, ctx):
    rt = ctx.runtime
    match node:
        case ast.Variable(name) if name != 'this':
            return dataclasses.replace(
                ctx, variables=ctx.variables.dissoc('$' + name)
            )
        case ast.VariableVariable(name_expr):
            name, ctx = eval_expr(name_expr, ctx)
            return dataclasses.replace(
                ctx, variables=ctx.variables.dissoc('$' + to_string(name))
            )
        case ast.Index(_, index) if index is not None:
            base, (*outer, key), ctx = _index_path(node, ctx)
            container, ctx = _read_path(base, outer, ctx)
            if isinstance(container, PhpArray):
                return _write_path(base, outer, container.dissoc(key), ctx)
            if _is_array_access(container):
                rt.call_method(container, 'offsetUnset', [key], scope=ctx.cls)
                return ctx
            if container is None:
                return ctx
            raise EvaluationError('Unset', 'Cannot unset offset in a non-array variable')
        case ast.PropertyFetch(obj, name, _):
            target, ctx = eval_expr(obj, ctx)
            name, ctx = _member_name(name, ctx)
            rt.unset_property(target, name)
            return ctx
    raise EvaluationError('Unset', f'Cannot unset {node.kind}')


def _base_variable(target, ctx):
    "the variable an assignment to target ends up changing, if any"
    match target:
        case ast.Variable(name) if name != 'this':
            return '$' + name
        case ast.VariableVariable(name_expr):
            name, _ = eval_expr(name_expr, ctx)
            return '$' + to_string(name)
        case ast.Index(obj, _):
            return _base_variable(obj, ctx)
        case ast.ArrayLiteral(items, _):
            for item in items:
                if item is not None:
                    return _base_variable(item.value, ctx)
    return None


# ---------
#  Calls
# ---------

# builtins whose by-reference argument is only written to, so may be undefined
_OUT_ARGUMENTS = {
    'preg_match': {2},
    'preg_match_all': {2},
    'str_replace': {3},
    'str_ireplace': {3},
}


def _eval_args(args, ctx, lenient=frozenset()):
    "(positional, named, ctx)"
    positional = []
    named = {}
    for i, arg in enumerate(args):
        if arg.spread:
            value, ctx = eval_expr(arg.value, ctx)
            if not _is_unpackable(value, ctx.runtime):
                raise EvaluationError(
                    'Call', 'Only arrays and Traversables can be unpacked'
                )
            for k, v in ctx.runtime.iterate(value):
                if isinstance(k, str):
                    named[k] = v
                elif named:
                    raise EvaluationError(
                        'Call',
                        'Cannot use positional argument after named argument '
                        'during unpacking'
                    )
                else:
                    positional.append(v)
        elif arg.name is not None:
            if arg.name in named:
                raise EvaluationError(
                    'Call', f'Named parameter ${arg.name} overwrites previous argument'
                )
            named[arg.name], ctx = eval_expr(arg.value, ctx)
        else:
            if named:
                raise EvaluationError(
                    'Call', 'Cannot use positional argument after named argument'
                )
            if i in lenient:
                value, ctx = lookup(arg.value, ctx)
            else:
                value, ctx = eval_expr(arg.value, ctx)
            positional.append(value)
    return positional, named, ctx


def _write_back(args, updated, ctx):
    "store the new values of by-reference arguments"
    for position, value in updated.arguments.items():
        if position >= len(args):
            continue
        arg = args[position]
        if arg.spread or arg.name is not None or not _is_target(arg.value):
            continue
        if arg.value == ast.Variable('this'):
            continue
        ctx = assign_to(arg.value, value, ctx)
    return ctx


def _find_function(name, ctx):
    local = ctx.variables.get('$' + name)
    if (local is not None and not isinstance(local, (str, PhpArray))
            and is_callable_value(local)):
        return local
    rt = ctx.runtime
    resolved = ctx.session.resolve_name(name)
    fn = rt.lookup_function(resolved)
    if fn is None and not name.startswith('\\'):
        fn = rt.lookup_function(name)
    if fn is None:
        raise EvaluationError(
            'FuncCall', f'Function not found: {name} (resolved to: {resolved})'
        )
    return fn


def _call(node, ctx):
    rt = ctx.runtime
    callee = node.callee
    if isinstance(callee, ast.ConstFetch):
        name = callee.name
        lowered = name.lstrip('\\').lower()
        if lowered in _SCOPE_FUNCTIONS and '$' + name not in ctx.variables:
            return _SCOPE_FUNCTIONS[lowered](node.args, ctx)
        fn = _find_function(name, ctx)
        positional, named, ctx = _eval_args(
            node.args, ctx, _OUT_ARGUMENTS.get(lowered, frozenset())
        )
        display_name = name.lstrip('\\')
    else:
        target, ctx = eval_expr(callee, ctx)
        positional, named, ctx = _eval_args(node.args, ctx)
        fn = rt.callable_for(target, ctx.cls)
        display_name = target if isinstance(target, str) else None
    result = rt.invoke(
        _with_call_site(fn, ctx), positional, named, name=display_name, raw=True
    )
    if isinstance(result, Updated):
        ctx = _write_back(node.args, result, ctx)
        result = result.result
    return result, ctx


def _closure_scope(fn, scope, ctx):
    "the class a rebound closure runs in"
    match scope:
        case None:
            return None
        case Instance():
            return scope.info
        case str() if scope == 'static':
            return fn.ctx.cls
        case str():
            return _find_class('\\' + scope.lstrip('\\'), ctx)
    raise EvaluationError(
        'Closure', 'Closure scope must be an object or a class name, '
        f'{debug_type(scope)} given'
    )


def _closure_args(name, positional, named, params, required, default=None):
    "positional and named arguments of a Closure method, in parameter order"
    values = list(positional[:len(params)])
    for param in params[len(values):]:
        values.append(named.get(param, _MISSING))
    given = sum(value is not _MISSING for value in values)
    if len(positional) > len(params):
        bound, count, given = 'at most', len(params), len(positional)
    elif any(value is _MISSING for value in values[:required]):
        bound, count = 'at least', required
    else:
        return [default if value is _MISSING else value for value in values]
    plural = '' if count == 1 else 's'
    raise ReplTypeError(
        name, f'{name}() expects {bound} {count} argument{plural}, {given} given'
    )


def _bind_closure(fn, this, scope, ctx):
    if not isinstance(fn, Function):
        raise EvaluationError(
            'Closure', f'Cannot bind value of type {debug_type(fn)}'
        )
    cls = _closure_scope(fn, scope, ctx)
    if cls is None and isinstance(this, Instance) and scope == 'static':
        cls = this.info
    static_cls = this.info if isinstance(this, Instance) else cls
    return fn.bind(this, cls, static_cls)


def _closure_method(fn, name, args, named, ctx):
    "methods of Closure objects"
    rt = ctx.runtime
    match name.lower():
        case '__invoke':
            return rt.invoke(fn, args, named, name='Closure::__invoke')
        case 'call':
            if not args or not isinstance(args[0], Instance):
                raise ReplTypeError(
                    'Closure::call',
                    'Closure::call(): Argument #1 ($newThis) must be of type object'
                )
            this, *rest = args
            return rt.invoke(fn.bind(this, this.info, this.info), rest, named,
                             name='Closure::call')
        case 'bindto':
            this = args[0] if args else named.get('newThis')
            scope = args[1] if len(args) > 1 else named.get('newScope', 'static')
            return _bind_closure(fn, this, scope, ctx)
    raise EvaluationError(
        'MethodCall', f'Call to undefined method Closure::{name}()'
    )


def _method_call(node, ctx):
    obj, ctx = eval_expr(node.obj, ctx)
    if obj is None and node.nullsafe:
        return None, ctx
    name, ctx = _member_name(node.name, ctx)
    positional, named, ctx = _eval_args(node.args, ctx)
    if isinstance(obj, Function):
        return _closure_method(obj, name, positional, named, ctx), ctx
    return ctx.runtime.call_method(obj, name, positional, named, scope=ctx.cls), ctx


def _static_call(node, ctx):
    rt = ctx.runtime
    cls_node = node.cls
    if isinstance(cls_node, ast.ConstFetch) \
            and cls_node.name.lstrip('\\').lower() == 'closure':
        positional, named, ctx = _eval_args(node.args, ctx)
        match node.name.lower():
            case 'fromcallable':
                callback, = _closure_args(
                    'Closure::fromCallable', positional, named, ['callback'], 1
                )
                return rt.callable_for(callback, ctx.cls), ctx
            case 'bind':
                fn, this, scope = _closure_args(
                    'Closure::bind', positional, named,
                    ['closure', 'newThis', 'newScope'], 2, default='static',
                )
                return _bind_closure(fn, this, scope, ctx), ctx
        raise EvaluationError(
            'StaticCall', f'Call to undefined method Closure::{node.name}()'
        )

    info, ctx = _class_ref(cls_node, ctx)
    positional, named, ctx = _eval_args(node.args, ctx)
    forwarding = (isinstance(cls_node, ast.ConstFetch)
                  and cls_node.name.lower() in ('self', 'parent', 'static'))
    static_cls = ctx.static_cls if forwarding else None
    this = ctx.this
    if not isinstance(this, Instance) or not this.info.is_subclass_of(info.name):
        this = None
    return rt.call_static(
        info, node.name, positional, named, this=this, scope=ctx.cls,
        static_cls=static_cls,
    ), ctx


def _first_class_callable(target, ctx):
    rt = ctx.runtime
    match target:
        case ast.Call(ast.ConstFetch(name), _):
            return _with_call_site(_find_function(name, ctx), ctx), ctx
        case ast.Call(callee, _):
            value, ctx = eval_expr(callee, ctx)
            return rt.callable_for(value, ctx.cls), ctx
        case ast.MethodCall(obj, name, _, _):
            value, ctx = eval_expr(obj, ctx)
            name, ctx = _member_name(name, ctx)
            if isinstance(value, Function) and name.lower() == '__invoke':
                return value, ctx
            return rt.callable_for(PhpArray.from_list([value, name]), ctx.cls), ctx
        case ast.StaticCall(cls, name, _):
            info, ctx = _class_ref(cls, ctx)
            return rt.callable_for(f'{info.name}::{name}', ctx.cls), ctx
    raise EvaluationError('FirstClassCallable', f'Cannot make a callable of {target.kind}')


# functions that read or change the calling scope, so live here

def _scope_unset(args, ctx):
    for arg in args:
        ctx = _unset(arg.value, ctx)
    return None, ctx


def _names(value):
    if isinstance(value, PhpArray):
        for v in value.values():
            yield from _names(v)
    else:
        yield to_string(value)


def _scope_compact(args, ctx):
    positional, _, ctx = _eval_args(args, ctx)
    result = PhpArray.empty()
    for value in positional:
        for name in _names(value):
            if '$' + name in ctx.variables:
                result = result.assoc(name, ctx.variables['$' + name])
    return result, ctx


_IDENTIFIER = re.compile(r'[A-Za-z_][A-Za-z0-9_]*\Z')


def _scope_extract(args, ctx):
    positional, _, ctx = _eval_args(args, ctx)
    if not positional or not isinstance(positional[0], PhpArray):
        raise ReplTypeError(
            'extract', 'extract(): Argument #1 ($array) must be of type array'
        )
    count = 0
    for k, v in positional[0].items():
        if isinstance(k, str) and _IDENTIFIER.match(k) and k != 'this':
            ctx = _set_variable(ctx, '$' + k, v)
            count += 1
    return count, ctx


def _scope_get_defined_vars(args, ctx):
    return PhpArray.from_items(
        (name[1:], value) for name, value in ctx.variables.items()
    ), ctx


def _scope_get_called_class(args, ctx):
    cls = ctx.static_cls or ctx.cls
    return (cls.name if cls is not None else False), ctx


_SCOPE_FUNCTIONS = {
    'unset': _scope_unset,
    'compact': _scope_compact,
    'extract': _scope_extract,
    'get_defined_vars': _scope_get_defined_vars,
    'get_called_class': _scope_get_called_class,
}


# ---------------
#  Expressions
# ---------------

def eval_expr(node, ctx):
    rt = ctx.runtime
    match node:
        case ast.Literal(value):
            return value, ctx

        case ast.InterpolatedString(parts):
            pieces = []
            for part in parts:
                if isinstance(part, str):
                    pieces.append(part)
                else:
                    value, ctx = eval_expr(part, ctx)
                    pieces.append(to_string(value))
            return ''.join(pieces), ctx

        case ast.Variable('this'):
            if ctx.this is None:
                raise EvaluationError(
                    'Variable', 'Using $this when not in object context'
                )
            return ctx.this, ctx
        case ast.Variable(name):
            return _read_variable('$' + name, ctx), ctx
        case ast.VariableVariable(name_expr):
            name, ctx = eval_expr(name_expr, ctx)
            return _read_variable('$' + to_string(name), ctx), ctx

        case ast.ConstFetch(name):
            return _constant(name, ctx), ctx
        case ast.MagicConst(name, line):
            return _magic_constant(name, line, ctx), ctx

        case ast.ArrayLiteral(items, _):
            return _array_literal(items, ctx)

        case ast.Assign(target, value_node):
            value, ctx = eval_expr(value_node, ctx)
            return value, assign_to(target, value, ctx)
        case ast.CompoundAssign('??', ast.Index() as target, value_node):
            base, keys, ctx = _index_path(target, ctx)
            current, ctx = _read_path(base, keys, ctx)
            if current is not None:
                return current, ctx
            value, ctx = eval_expr(value_node, ctx)
            return value, _write_path(base, keys, value, ctx)
        case ast.CompoundAssign('??', target, value_node):
            current, ctx = lookup(target, ctx)
            if current is not None:
                return current, ctx
            value, ctx = eval_expr(value_node, ctx)
            return value, assign_to(target, value, ctx)
        case ast.CompoundAssign(op, ast.Index() as target, value_node):
            base, keys, ctx = _index_path(target, ctx)
            current, ctx = _read_path(base, keys, ctx)
            operand, ctx = eval_expr(value_node, ctx)
            value = binary_op(op, current, operand)
            return value, _write_path(base, keys, value, ctx)
        case ast.CompoundAssign(op, target, value_node):
            current, ctx = eval_expr(target, ctx)
            operand, ctx = eval_expr(value_node, ctx)
            value = binary_op(op, current, operand)
            return value, assign_to(target, value, ctx)

        case ast.BinaryOp('&&' | 'and', left, right):
            value, ctx = eval_expr(left, ctx)
            if not to_bool(value):
                return False, ctx
            value, ctx = eval_expr(right, ctx)
            return to_bool(value), ctx
        case ast.BinaryOp('||' | 'or', left, right):
            value, ctx = eval_expr(left, ctx)
            if to_bool(value):
                return True, ctx
            value, ctx = eval_expr(right, ctx)
            return to_bool(value), ctx
        case ast.BinaryOp('??', left, right):
            value, ctx = lookup(left, ctx)
            if value is not None:
                return value, ctx
            return eval_expr(right, ctx)
        case ast.BinaryOp(op, left, right):
            a, ctx = eval_expr(left, ctx)
            b, ctx = eval_expr(right, ctx)
            return binary_op(op, a, b), ctx
        case ast.UnaryOp(op, operand):
            value, ctx = eval_expr(operand, ctx)
            return unary_op(op, value), ctx
        case ast.Cast(type_name, expr):
            value, ctx = eval_expr(expr, ctx)
            return _cast(type_name, value, ctx), ctx
        case ast.IncDec(op, prefix, ast.Index() as target):
            base, keys, ctx = _index_path(target, ctx)
            old, ctx = _read_path(base, keys, ctx)
            new = increment(old) if op == '++' else decrement(old)
            ctx = _write_path(base, keys, new, ctx)
            return (new if prefix else old), ctx
        case ast.IncDec(op, prefix, target):
            old, ctx = eval_expr(target, ctx)
            new = increment(old) if op == '++' else decrement(old)
            ctx = assign_to(target, new, ctx)
            return (new if prefix else old), ctx

        case ast.Ternary(cond, then, else_):
            test, ctx = eval_expr(cond, ctx)
            if to_bool(test):
                return (test, ctx) if then is None else eval_expr(then, ctx)
            return eval_expr(else_, ctx)
        case ast.Match(subject, arms):
            value, ctx = eval_expr(subject, ctx)
            default = None
            for arm in arms:
                if arm.conds is None:
                    default = arm
                    continue
                for cond in arm.conds:
                    candidate, ctx = eval_expr(cond, ctx)
                    if strict_equals(value, candidate):
                        return eval_expr(arm.body, ctx)
            if default is not None:
                return eval_expr(default.body, ctx)
            raise EvaluationError(
                'Match', f'Unhandled match case {format_value(value)}'
            )

        case ast.Closure():
            return _make_closure(node, ctx), ctx
        case ast.ArrowFunction():
            return _make_arrow_function(node, ctx), ctx

        case ast.Call():
            return _call(node, ctx)
        case ast.MethodCall():
            return _method_call(node, ctx)
        case ast.StaticCall():
            return _static_call(node, ctx)
        case ast.FirstClassCallable(target):
            return _first_class_callable(target, ctx)

        case ast.PropertyFetch(obj, name, nullsafe):
            target, ctx = eval_expr(obj, ctx)
            if target is None and nullsafe:
                return None, ctx
            name, ctx = _member_name(name, ctx)
            return rt.get_property(target, name, scope=ctx.cls), ctx
        case ast.StaticPropertyFetch(cls, name):
            info, ctx = _class_ref(cls, ctx)
            return rt.get_static_property(info, name, scope=ctx.cls), ctx
        case ast.ClassConstFetch(ast.ConstFetch(cls_name), 'class') \
                if cls_name.lower() not in ('self', 'static', 'parent'):
            return _resolve_class_name(cls_name, ctx), ctx
        case ast.ClassConstFetch(cls, 'class'):
            info, ctx = _class_ref(cls, ctx)
            return info.name, ctx
        case ast.ClassConstFetch(cls, name):
            info, ctx = _class_ref(cls, ctx)
            return rt.class_constant(info, name), ctx
        case ast.Index(_, None):
            raise EvaluationError('Index', 'Cannot use [] for reading')
        case ast.Index(obj, index):
            container, ctx = eval_expr(obj, ctx)
            key, ctx = eval_expr(index, ctx)
            return _read_index(container, key, ctx), ctx

        case ast.New(cls, args):
            info, ctx = _class_ref(cls, ctx)
            positional, named, ctx = _eval_args(args, ctx)
            return rt.construct(info, positional, named, scope=ctx.cls), ctx
        case ast.NewAnonymous(decl, args):
            info = declare_class(decl, ctx, anonymous_name=rt.new_anonymous_name())
            positional, named, ctx = _eval_args(args, ctx)
            return rt.construct(info, positional, named, scope=ctx.cls), ctx
        case ast.Clone(expr):
            value, ctx = eval_expr(expr, ctx)
            return rt.clone(value), ctx
        case ast.Instanceof(expr, cls):
            value, ctx = eval_expr(expr, ctx)
            if isinstance(cls, ast.ConstFetch):
                if cls.name.lower() in ('self', 'static', 'parent'):
                    info, ctx = _class_ref(cls, ctx)
                    type_name = info.name
                else:
                    type_name = _resolve_class_name(cls.name, ctx)
            else:
                other, ctx = eval_expr(cls, ctx)
                type_name = other.info.name if isinstance(other, Instance) \
                    else to_string(other)
            return rt.instanceof(value, type_name), ctx

        case ast.ErrorSuppress(expr):
            try:
                return eval_expr(expr, ctx)
            except ReplError as e:
                log.debug('suppressed: %s', e)
                return None, ctx
        case ast.Throw(expr):
            value, ctx = eval_expr(expr, ctx)
            if not isinstance(value, Instance) \
                    or not value.info.is_subclass_of('Throwable'):
                raise EvaluationError('Throw', 'Can only throw objects')
            raise EvaluationError(
                value.class_name(), to_string(value.props.get('message', ''))
            )
        case ast.Print(expr):
            value, ctx = eval_expr(expr, ctx)
            rt.write(to_string(value))
            return 1, ctx

        case ast.Isset(exprs):
            for expr in exprs:
                value, ctx = lookup(expr, ctx)
                if value is None:
                    return False, ctx
            return True, ctx
        case ast.Empty(expr):
            value, ctx = lookup(expr, ctx)
            return not to_bool(value), ctx

        case ast.Yield() | ast.YieldFrom():
            raise EvaluationError(
                node.kind,
                'yield is only supported as a statement or as the right-hand '
                'side of an assignment inside a function'
            )
    raise EvaluationError(node.kind, f'Unsupported expression type: {node.kind}')


# --------------
#  Statements
# --------------

def exec_block(stmts, ctx):
    value = None
    for stmt in stmts:
        value, ctx = exec_stmt(stmt, ctx)
    return value, ctx


def _iteration(body, ctx):
    "run a loop body once: (stop, ctx)"
    try:
        _, ctx = exec_stmt(body, ctx)
    except _LoopSignal as s:
        return _caught(s)
    return False, ctx


def _condition(exprs, ctx):
    "the truth of a for loop condition list, the last expression deciding"
    test = True
    for expr in exprs:
        test, ctx = eval_expr(expr, ctx)
    return to_bool(test), ctx


def _foreach_pairs(subject, ctx):
    pairs = ctx.runtime.iterate(subject)
    while True:
        try:
            pair = next(pairs)
        except StopIteration:
            return
        except RuntimeError as e:
            if isinstance(e, RecursionError):
                raise
            raise EvaluationError('Foreach', str(e)) from e
        yield pair


def _bind_foreach(node, k, v, ctx):
    if node.key is not None:
        ctx = assign_to(node.key, k, ctx)
    return assign_to(node.value, v, ctx)


def _write_foreach_ref(node, k, ctx):
    value, ctx = eval_expr(node.value, ctx)
    return assign_to(ast.Index(node.subject, ast.Literal(k)), value, ctx)


def exec_stmt(node, ctx):
    rt = ctx.runtime
    match node:
        case ast.ExprStmt(expr):
            return eval_expr(expr, ctx)
        case ast.Echo(exprs):
            for expr in exprs:
                value, ctx = eval_expr(expr, ctx)
                rt.write(to_string(value))
            return None, ctx
        case ast.Return(expr):
            value = None
            if expr is not None:
                value, ctx = eval_expr(expr, ctx)
            raise ReturnSignal(value, ctx)
        case ast.Break(levels):
            raise BreakSignal(levels, ctx)
        case ast.Continue(levels):
            raise ContinueSignal(levels, ctx)
        case ast.Block(stmts):
            return exec_block(stmts, ctx)
        case ast.Nop():
            return None, ctx

        case ast.If(cond, body, elifs, else_):
            for c, b in ((cond, body), *elifs):
                test, ctx = eval_expr(c, ctx)
                if to_bool(test):
                    return exec_stmt(b, ctx)
            if else_ is not None:
                return exec_stmt(else_, ctx)
            return None, ctx
        case ast.While(cond, body):
            while True:
                test, ctx = eval_expr(cond, ctx)
                if not to_bool(test):
                    break
                stop, ctx = _iteration(body, ctx)
                if stop:
                    break
            return None, ctx
        case ast.DoWhile(body, cond):
            while True:
                stop, ctx = _iteration(body, ctx)
                if stop:
                    break
                test, ctx = eval_expr(cond, ctx)
                if not to_bool(test):
                    break
            return None, ctx
        case ast.For(init, cond, step, body):
            for expr in init:
                _, ctx = eval_expr(expr, ctx)
            while True:
                test, ctx = _condition(cond, ctx)
                if not test:
                    break
                stop, ctx = _iteration(body, ctx)
                if stop:
                    break
                for expr in step:
                    _, ctx = eval_expr(expr, ctx)
            return None, ctx
        case ast.Foreach(subject_node, _, body, _, by_ref):
            subject, ctx = eval_expr(subject_node, ctx)
            for k, v in _foreach_pairs(subject, ctx):
                ctx = _bind_foreach(node, k, v, ctx)
                stop, ctx = _iteration(body, ctx)
                if by_ref:
                    ctx = _write_foreach_ref(node, k, ctx)
                if stop:
                    break
            return None, ctx

        case ast.FunctionDecl():
            return declare_function(node, ctx)
        case ast.ConstDecl(items):
            for name, expr in items:
                value, ctx = eval_expr(expr, ctx)
                rt.define_constant(_qualify(name, ctx), value)
            return None, ctx
        case ast.NamespaceDecl(name, None):
            return None, dataclasses.replace(
                ctx, session=ctx.session.with_namespace(name)
            )
        case ast.NamespaceDecl(name, body):
            inner = dataclasses.replace(ctx, session=ctx.session.with_namespace(name))
            value, inner = exec_block(body, inner)
            return value, dataclasses.replace(inner, session=ctx.session)
        case ast.Use(items):
            session = ctx.session
            for item in items:
                session = session.with_alias(_alias_of(item), item.name)
            return None, dataclasses.replace(ctx, session=session)
        case ast.ClassDecl() | ast.InterfaceDecl() | ast.TraitDecl() | ast.EnumDecl():
            declare_class(node, ctx)
            return None, ctx
    raise EvaluationError(node.kind, f'Unsupported statement type: {node.kind}')


def _alias_of(item):
    return item.alias or item.name.rstrip('\\').rsplit('\\', 1)[-1]


# -------------------------------
#  Statements inside generators
# -------------------------------

def _yield_target(node):
    "whether node is a yield the generator statements can suspend at"
    match node:
        case ast.Yield() | ast.YieldFrom():
            return True
        case ast.Assign(_, ast.Yield() | ast.YieldFrom()):
            return True
    return False


def _gen_expr(node, ctx):
    match node:
        case ast.Yield(value_node, key_node):
            key = value = None
            if key_node is not None:
                key, ctx = eval_expr(key_node, ctx)
            if value_node is not None:
                value, ctx = eval_expr(value_node, ctx)
            sent = yield (key, value)
            return sent, ctx
        case ast.YieldFrom(expr):
            source, ctx = eval_expr(expr, ctx)
            if isinstance(source, Generator):
                for pair in source.items():
                    yield pair
                return source.getReturn(), ctx
            if not _is_unpackable(source, ctx.runtime):
                raise EvaluationError(
                    'YieldFrom', 'Can use "yield from" only with arrays and Traversables'
                )
            for pair in ctx.runtime.iterate(source):
                yield pair
            return None, ctx
        case ast.Assign(target, value_node) if _yield_target(value_node):
            sent, ctx = yield from _gen_expr(value_node, ctx)
            return sent, assign_to(target, sent, ctx)
    return eval_expr(node, ctx)


def _gen_iteration(body, ctx):
    try:
        _, ctx = yield from gen_stmt(body, ctx)
    except _LoopSignal as s:
        return _caught(s)
    return False, ctx


def gen_stmt(node, ctx):
    """
    exec_stmt for the body of a generator function. It is a python
    generator yielding (key, value) pairs and receiving sent values, and
    it returns (value, ctx) like exec_stmt. Statements without a yield of
    their own run through exec_stmt.
    """
    if not ast.contains_yield(node):
        return exec_stmt(node, ctx)
    match node:
        case ast.ExprStmt(expr) if _yield_target(expr):
            return (yield from _gen_expr(expr, ctx))
        case ast.Block(stmts):
            value = None
            for stmt in stmts:
                value, ctx = yield from gen_stmt(stmt, ctx)
            return value, ctx
        case ast.If(cond, body, elifs, else_):
            for c, b in ((cond, body), *elifs):
                test, ctx = eval_expr(c, ctx)
                if to_bool(test):
                    return (yield from gen_stmt(b, ctx))
            if else_ is not None:
                return (yield from gen_stmt(else_, ctx))
            return None, ctx
        case ast.While(cond, body):
            while True:
                test, ctx = eval_expr(cond, ctx)
                if not to_bool(test):
                    break
                stop, ctx = yield from _gen_iteration(body, ctx)
                if stop:
                    break
            return None, ctx
        case ast.DoWhile(body, cond):
            while True:
                stop, ctx = yield from _gen_iteration(body, ctx)
                if stop:
                    break
                test, ctx = eval_expr(cond, ctx)
                if not to_bool(test):
                    break
            return None, ctx
        case ast.For(init, cond, step, body):
            for expr in init:
                _, ctx = eval_expr(expr, ctx)
            while True:
                test, ctx = _condition(cond, ctx)
                if not test:
                    break
                stop, ctx = yield from _gen_iteration(body, ctx)
                if stop:
                    break
                for expr in step:
                    _, ctx = eval_expr(expr, ctx)
            return None, ctx
        case ast.Foreach(subject_node, _, body, _, by_ref):
            subject, ctx = eval_expr(subject_node, ctx)
            for k, v in _foreach_pairs(subject, ctx):
                ctx = _bind_foreach(node, k, v, ctx)
                stop, ctx = yield from _gen_iteration(body, ctx)
                if by_ref:
                    ctx = _write_foreach_ref(node, k, ctx)
                if stop:
                    break
            return None, ctx
    # the yield sits somewhere eval_expr cannot suspend, which it reports
    return exec_stmt(node, ctx)


# ----------------
#  Declarations
# ----------------

def declare_function(node, ctx):
    rt = ctx.runtime
    name = _qualify(node.name, ctx)
    key = name.lower()
    if rt.is_host_function(name) or key in ctx.declared:
        raise EvaluationError('Function', f'Cannot redeclare {name}()')
    _check_types_exist(node.params, node.return_type, ctx)
    captured = ctx.variables if ctx.globals is not None else None
    fn = _function(
        name, node.params, node.body, ctx, captured=captured,
        return_type=node.return_type, named=True, fn_name=node.name,
    )
    rt.define_user_function(name, fn)
    log.debug('declared function %s', name)
    return fn, dataclasses.replace(ctx, declared=ctx.declared | {key})


def _class_kind(node):
    match node:
        case ast.ClassDecl():
            return 'class'
        case ast.InterfaceDecl():
            return 'interface'
        case ast.TraitDecl():
            return 'trait'
        case ast.EnumDecl():
            return 'enum'
    raise EvaluationError(node.kind, f'Unsupported declaration type: {node.kind}')


def declare_class(node, ctx, anonymous_name=None):
    """
    Build the ClassInfo of a class-like declaration and hand it to the
    runtime. Constants, property defaults and enum case values are
    evaluated here, so a failing one leaves nothing declared.
    """
    rt = ctx.runtime
    kind = _class_kind(node)
    name = anonymous_name or _qualify(node.name, ctx)
    parent = getattr(node, 'parent', None)
    interfaces = node.parents if kind == 'interface' else getattr(node, 'interfaces', ())
    modifiers = frozenset(getattr(node, 'modifiers', ()))
    backing = getattr(node, 'backing_type', None)
    traits = [n for m in node.members if isinstance(m, ast.TraitUse) for n in m.names]

    info = ClassInfo(
        name,
        kind=kind,
        parent_name=_resolve_class_name(parent, ctx) if parent else None,
        interface_names=tuple(_resolve_class_name(n, ctx) for n in interfaces),
        trait_names=tuple(_resolve_class_name(n, ctx) for n in traits),
        modifiers=modifiers,
        backing_type=str(backing).lower() if backing is not None else None,
        anonymous=anonymous_name is not None,
    )
    label = 'class@anonymous' if anonymous_name else name
    own = (name,) if anonymous_name else (name, node.name)
    class_ctx = dataclasses.replace(
        ctx, variables=OrderedMap.empty(), this=None, cls=info, static_cls=info,
    )

    for member in node.members:
        match member:
            case ast.ClassConstDecl(const_name, expr, _):
                info.constants[const_name], _ = eval_expr(expr, class_ctx)
            case ast.PropertyDecl(prop_name, default, prop_modifiers, prop_type):
                value = None
                if default is not None:
                    value, _ = eval_expr(default, class_ctx)
                prop_modifiers = set(prop_modifiers)
                if 'readonly' in modifiers:
                    prop_modifiers.add('readonly')
                info.add_property(
                    prop_name, value, prop_modifiers, typed=prop_type is not None,
                    has_default=default is not None or prop_type is None,
                )
            case ast.MethodDecl(method_name, params, body, method_modifiers, rtype):
                _check_types_exist(params, rtype, ctx, own)
                fn = _function(
                    f'{label}::{method_name}', params, body, class_ctx,
                    return_type=rtype, fn_name=method_name,
                )
                method_modifiers = set(method_modifiers)
                if body is None or kind == 'interface':
                    method_modifiers.add('abstract')
                info.add_method(method_name, fn, method_modifiers)
                if method_name.lower() == '__construct':
                    _add_promoted_properties(info, params, modifiers)
            case ast.EnumCaseDecl(case_name, expr):
                value = None
                if expr is not None:
                    value, _ = eval_expr(expr, class_ctx)
                info.case_values[case_name] = value
            case ast.TraitUse():
                pass
            case _:
                raise EvaluationError(
                    member.kind, f'Unsupported class member: {member.kind}'
                )

    return rt.declare(info)


def _add_promoted_properties(info, params, class_modifiers):
    for p in params:
        if not p.modifiers:
            continue
        modifiers = set(p.modifiers)
        if 'readonly' in class_modifiers:
            modifiers.add('readonly')
        info.add_property(
            p.name, None, modifiers, typed=p.type is not None, has_default=False
        )


# -------------
#  Top level
# -------------

def _binding(last, value, ctx):
    "(binding, value, type, side effect only) for the last statement"
    match last:
        case ast.ExprStmt(ast.Assign(target, _) | ast.CompoundAssign(_, target, _)):
            name = _base_variable(target, ctx)
            if name is None or name not in ctx.variables:
                return Silent(), value, type_of(value), False
            value = ctx.variables[name]
            return Bind(name), value, type_of(value), False
        case ast.ExprStmt(ast.Call(ast.ConstFetch(name), _)):
            lowered = name.lstrip('\\').lower()
            if lowered == 'unset':
                return Silent(), None, 'Null', False
            if lowered in OUTPUT_FUNCTIONS and not isinstance(value, str):
                return Value(), value, type_of(value), True
        case ast.ExprStmt(ast.Print()) | ast.Echo():
            return Value(), value, type_of(value), True
        case ast.FunctionDecl(name):
            return Bind('$' + name), value, 'Function', False
        case ast.ClassDecl(name) | ast.InterfaceDecl(name) | ast.TraitDecl(name) \
                | ast.EnumDecl(name):
            return Declared(_class_kind(last), _qualify(name, ctx)), None, 'Null', False
        case ast.NamespaceDecl(name, None) | ast.NamespaceDecl(None as name, _):
            return Namespace(name), None, 'Null', False
        case ast.Use(items):
            aliases = tuple(Alias(_alias_of(i), i.name.lstrip('\\')) for i in items)
            return Import(aliases), None, 'Null', False
        case ast.NamespaceDecl() | ast.ConstDecl() | ast.If() | ast.While() \
                | ast.DoWhile() | ast.For() | ast.Foreach() | ast.Block() | ast.Nop():
            return Silent(), value, type_of(value), False
    return Value(), value, type_of(value), False


def _evaluate(fragment, session, runtime):
    ctx = Context(runtime, session, variables=session.variables)
    value = None
    last = fragment.stmts[-1] if fragment.stmts else ast.Nop()
    try:
        for stmt in fragment.stmts:
            value, ctx = exec_stmt(stmt, ctx)
    except ReturnSignal as r:
        value, ctx, last = r.value, r.ctx, ast.Return()
    except _LoopSignal as s:
        raise _outside_loop(s) from None
    except RecursionError:
        raise EvaluationError('Evaluation', 'Maximum nesting depth exceeded') from None

    binding, value, type_name, side_effect_only = _binding(last, value, ctx)
    bound_name = binding.name if isinstance(binding, Bind) else None
    changed = OrderedMap.empty()
    for name, v in ctx.variables.items():
        if name == bound_name:
            continue
        if name not in session.variables or session.variables[name] is not v:
            changed = changed.assoc(name, v)
    removed = tuple(name for name in session.variables if name not in ctx.variables)
    return EvaluationResult(
        value, type_name, binding, changed, side_effect_only, removed
    )


def evaluate(fragment, session, runtime):
    "Result[EvaluationResult] for running fragment against session"
    log.debug('evaluating %d statements', len(fragment.stmts))
    return attempt(lambda: _evaluate(fragment, session, runtime))


def evaluate_source(text, session, runtime):
    return parse_result(text).flat_map(
        lambda fragment: evaluate(fragment, session, runtime)
    )
