"""
phrepl.runtime

The object system and everything else the evaluator asks of its host:
declared types, builtin and imported functions, constants, and the output
writer. A HostRuntime is a plain object, so every test can build a fresh one.
"""
import copy
import functools
import importlib
import inspect
import itertools
import logging
import sys
from collections import namedtuple
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from phrepl.builtins import STANDARD_CONSTANTS, Updated, standard_functions
from phrepl.exceptions import EvaluationError, ReplError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.values import (
    Generator, ObjectHandle, PhpArray, debug_type, format_value,
    is_callable_value, loose_equals, strict_equals, to_int,
)

log = logging.getLogger(__name__)


class Invocable:
    """
    Callables that bind their own arguments, i.e. functions written in the
    REPL language. They report their parameters through __signature__ like
    any python callable, but arity and type errors are theirs to raise.
    """

    def call(self, args, named):
        raise NotImplementedError

    def bind(self, this, cls, static_cls):
        raise NotImplementedError

    def __call__(self, *args, **named):
        return self.call(args, named)


ParamMeta = namedtuple('ParamMeta', ['name', 'has_default', 'variadic'])


# -----------------
#  Declared types
# -----------------

@dataclass
class MethodInfo:
    name: str
    function: Any  # an Invocable, or a python function taking this first
    modifiers: frozenset = frozenset()
    owner: Optional['ClassInfo'] = None
    native: bool = False

    @property
    def is_static(self):
        return 'static' in self.modifiers

    @property
    def is_abstract(self):
        return 'abstract' in self.modifiers

    @property
    def visibility(self):
        for v in ('private', 'protected'):
            if v in self.modifiers:
                return v
        return 'public'

    def bind(self, this, static_cls=None):
        "a callable with $this (or the static class) fixed"
        if self.native:
            if self.is_static:
                return functools.partial(self.function, static_cls or self.owner)
            return functools.partial(self.function, this)
        if static_cls is None:
            static_cls = this.info if this is not None else self.owner
        return self.function.bind(this, self.owner, static_cls)


@dataclass
class PropertyInfo:
    name: str
    default: Any = None
    modifiers: frozenset = frozenset()
    owner: Optional['ClassInfo'] = None
    typed: bool = False
    has_default: bool = True

    @property
    def visibility(self):
        for v in ('private', 'protected'):
            if v in self.modifiers:
                return v
        return 'public'


@dataclass(eq=False)
class ClassInfo:
    """
    A class, interface, trait or enum. The *_names fields are what the
    declaration says; declare() resolves them into parent, interfaces and
    merged trait members.
    """
    name: str
    kind: str = 'class'
    parent_name: Optional[str] = None
    interface_names: tuple = ()
    trait_names: tuple = ()
    modifiers: frozenset = frozenset()
    constants: dict = field(default_factory=dict)  # name -> value
    properties: dict = field(default_factory=dict)  # name -> PropertyInfo
    static_properties: dict = field(default_factory=dict)  # name -> PropertyInfo
    static_values: dict = field(default_factory=dict)
    methods: dict = field(default_factory=dict)  # lower-case name -> MethodInfo
    case_values: dict = field(default_factory=dict)  # enum case -> backing value
    cases: dict = field(default_factory=dict)  # enum case -> Instance
    backing_type: Optional[str] = None
    python_class: Optional[type] = None
    anonymous: bool = False
    parent: Optional['ClassInfo'] = None
    interfaces: tuple = ()

    def __repr__(self):
        return f'<ClassInfo {self.kind} {self.name}>'

    @property
    def is_abstract(self):
        return 'abstract' in self.modifiers

    def add_method(self, name, function, modifiers=(), native=False):
        self.methods[name.lower()] = MethodInfo(
            name, function, frozenset(modifiers), owner=self, native=native
        )
        return self

    def add_property(self, name, default=None, modifiers=(), **kwargs):
        prop = PropertyInfo(name, default, frozenset(modifiers), owner=self,
                            **kwargs)
        if 'static' in prop.modifiers:
            self.static_properties[name] = prop
            self.static_values[name] = default
        else:
            self.properties[name] = prop
        return self

    def mro(self):
        "this class then its parents, nearest first"
        info = self
        while info is not None:
            yield info
            info = info.parent

    def ancestors(self):
        "every class and interface this one is a subtype of, itself included"
        seen = []
        stack = [self]
        while stack:
            info = stack.pop(0)
            if any(info is s for s in seen):
                continue
            seen.append(info)
            if info.parent is not None:
                stack.append(info.parent)
            stack.extend(info.interfaces)
        return seen

    def is_subclass_of(self, name: str) -> bool:
        lowered = name.lstrip('\\').lower()
        return any(a.name.lower() == lowered for a in self.ancestors())

    def find_method(self, name: str) -> Optional[MethodInfo]:
        key = name.lower()
        for info in self.mro():
            if key in info.methods:
                return info.methods[key]
        for info in self.ancestors():
            if key in info.methods:
                return info.methods[key]
        return None

    def find_property(self, name: str) -> Optional[PropertyInfo]:
        for info in self.mro():
            if name in info.properties:
                return info.properties[name]
        return None

    def find_static_owner(self, name: str) -> Optional['ClassInfo']:
        for info in self.mro():
            if name in info.static_properties:
                return info
        return None

    def find_constant(self, name: str):
        "(found, value)"
        for info in self.ancestors():
            if name in info.constants:
                return True, info.constants[name]
        return False, None

    def all_abstract_methods(self):
        "abstract methods nothing in the class hierarchy implements"
        implemented = {
            key
            for info in self.mro()
            for key, m in info.methods.items() if not m.is_abstract
        }
        missing = {}
        for info in self.ancestors():
            for key, m in info.methods.items():
                if m.is_abstract and key not in implemented:
                    missing.setdefault(key, m)
        return list(missing.values())

    def instance_defaults(self):
        props = {}
        for info in reversed(list(self.mro())):
            for name, prop in info.properties.items():
                if prop.has_default or not prop.typed:
                    props[name] = prop.default
                else:
                    props.pop(name, None)
        return props


class TypeRegistry:
    "declared types, by case-insensitive fully qualified name"

    def __init__(self):
        self._types = {}

    def get(self, name: str) -> Optional[ClassInfo]:
        return self._types.get(name.lstrip('\\').lower())

    def exists(self, name: str, kind=None) -> bool:
        info = self.get(name)
        return info is not None and (kind is None or info.kind == kind)

    def register(self, info: ClassInfo):
        self._types[info.name.lower()] = info
        return info

    def __iter__(self):
        return iter(self._types.values())

    def __len__(self):
        return len(self._types)

    @staticmethod
    def standard():
        "a registry holding the builtin interfaces and exception classes"
        registry = TypeRegistry()
        for info in _builtin_types():
            registry.register(info)
        return registry


# -----------
#  Instances
# -----------

class Instance(ObjectHandle):
    "an object of a declared class, or an enum case"

    def __init__(self, info: ClassInfo, runtime, props=None, case=None):
        self.info = info
        self.runtime = runtime
        self.props = dict(props or {})
        self.case = case
        self.handle = next(runtime.handles)

    def object_id(self):
        return self.handle

    def properties(self):
        result = []
        for name, value in self.props.items():
            prop = self.info.find_property(name)
            if prop is None:
                result.append((name, value, 'public', self.info.name))
            else:
                result.append((name, value, prop.visibility, prop.owner.name))
        return result

    def class_name(self):
        if self.info.anonymous:
            return 'class@anonymous'
        return self.info.name

    def bound_method(self, name):
        method = self.info.find_method(name)
        if method is None or method.is_abstract or method.visibility != 'public':
            return None
        return method.bind(self)

    def is_enum_case(self):
        return self.case is not None

    def case_name(self):
        return self.case

    def is_anonymous(self):
        return self.info.anonymous

    def loosely_equals(self, other):
        if not isinstance(other, Instance) or other.info is not self.info:
            return False
        if self.case is not None or other.case is not None:
            return False
        if self.props.keys() != other.props.keys():
            return False
        return all(loose_equals(v, other.props[k]) for k, v in self.props.items())

    def __repr__(self):
        return f'<Instance {self.class_name()} at {hex(id(self))}>'


# --------------------
#  Builtin exceptions
# --------------------

def _exception_construct(this, message='', code=0, previous=None):
    this.props['message'] = message
    this.props['code'] = code
    this.props['previous'] = previous


def _getter(prop):
    def get(this):
        return this.props.get(prop)
    get.__name__ = 'get' + prop.capitalize()
    return get


def _exception_to_string(this):
    message = this.props.get('message')
    return f'{this.class_name()}: {message}' if message else this.class_name()


_EXCEPTION_TREE = [
    ('ErrorException', 'Exception'),
    ('RuntimeException', 'Exception'),
    ('LogicException', 'Exception'),
    ('InvalidArgumentException', 'LogicException'),
    ('DomainException', 'LogicException'),
    ('LengthException', 'LogicException'),
    ('OutOfRangeException', 'LogicException'),
    ('OutOfBoundsException', 'RuntimeException'),
    ('RangeException', 'RuntimeException'),
    ('OverflowException', 'RuntimeException'),
    ('UnderflowException', 'RuntimeException'),
    ('UnexpectedValueException', 'RuntimeException'),
    ('JsonException', 'Exception'),
    ('TypeError', 'Error'),
    ('ValueError', 'Error'),
    ('ArithmeticError', 'Error'),
    ('DivisionByZeroError', 'ArithmeticError'),
    ('ArgumentCountError', 'TypeError'),
]


def _builtin_types():
    def interface(name, *parents):
        info = ClassInfo(name, kind='interface', interface_names=parents)
        types[name.lower()] = info
        return info

    types = {}
    interface('Traversable')
    interface('Iterator', 'Traversable')
    interface('IteratorAggregate', 'Traversable')
    interface('Countable')
    interface('ArrayAccess')
    interface('Stringable')
    interface('JsonSerializable')
    interface('UnitEnum')
    interface('BackedEnum', 'UnitEnum')
    interface('Throwable', 'Stringable')

    types['stdclass'] = ClassInfo('stdClass')

    for root in ('Exception', 'Error'):
        info = ClassInfo(root, interface_names=('Throwable',))
        info.add_property('message', '', ['protected'])
        info.add_property('code', 0, ['protected'])
        info.add_property('previous', None, ['private'])
        info.add_property('file', 'php://stdin', ['protected'])
        info.add_property('line', 0, ['protected'])
        info.add_method('__construct', _exception_construct, native=True)
        for prop in ('message', 'code', 'previous', 'file', 'line'):
            info.add_method('get' + prop.capitalize(), _getter(prop),
                            ['final'], native=True)
        info.add_method('getTrace', lambda this: PhpArray.empty(), native=True)
        info.add_method('getTraceAsString', lambda this: '#0 {main}',
                        native=True)
        info.add_method('__toString', _exception_to_string, native=True)
        types[root.lower()] = info

    for name, parent in _EXCEPTION_TREE:
        types[name.lower()] = ClassInfo(name, parent_name=parent)

    for info in types.values():
        if info.parent_name is not None:
            info.parent = types[info.parent_name.lower()]
        info.interfaces = tuple(types[i.lower()] for i in info.interface_names)
    return types.values()


# -------------
#  The runtime
# -------------

def _scope_description(scope):
    return f'scope {scope.name}' if scope is not None else 'global scope'


def _visible(owner, visibility, scope):
    if visibility == 'public':
        return True
    if scope is None:
        return False
    if visibility == 'private':
        return scope is owner
    return scope.is_subclass_of(owner.name) or owner.is_subclass_of(scope.name)


def _python_value(value):
    "an argument on its way into imported python code"
    if isinstance(value, PhpArray):
        if value.is_list():
            return [_python_value(v) for v in value.values()]
        return {k: _python_value(v) for k, v in value.items()}
    return value


def _php_value(value):
    "a result coming back from imported python code"
    match value:
        case list() | tuple():
            return PhpArray.from_list(_php_value(v) for v in value)
        case dict():
            return PhpArray.from_items(
                (k, _php_value(v)) for k, v in value.items()
            )
        case set() | frozenset():
            return PhpArray.from_list(_php_value(v) for v in value)
    if inspect.isgenerator(value):
        return Generator((None, _php_value(v)) for v in value)
    return value


def _wrap_python_function(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        args = [_python_value(a) for a in args]
        kwargs = {k: _python_value(v) for k, v in kwargs.items()}
        return _php_value(fn(*args, **kwargs))
    return wrapper


class HostRuntime:

    def __init__(self, registry=None, writer=None):
        self.types = registry if registry is not None else TypeRegistry.standard()
        self.functions = standard_functions(self)  # lower-case name -> callable
        self.user_functions = {}  # lower-case name -> Invocable
        self.constants = dict(STANDARD_CONSTANTS)
        self._writers = [writer if writer is not None else sys.stdout.write]
        self._anonymous_count = 0
        self.handles = itertools.count(1)

    def reset(self):
        "forget every declaration made since start-up"
        self.types = TypeRegistry.standard()
        self.functions = standard_functions(self)
        self.user_functions = {}
        self.constants = dict(STANDARD_CONSTANTS)

    # Output

    def write(self, text):
        self._writers[-1](text)

    @contextmanager
    def redirect_output(self, writer):
        self._writers.append(writer)
        try:
            yield
        finally:
            self._writers.pop()

    # Calling

    def introspect_parameters(self, fn):
        try:
            sig = inspect.signature(fn)
        except (ValueError, TypeError) as e:
            raise EvaluationError(
                'Call', f'Cannot inspect the parameters of {fn!r}'
            ) from e
        return [
            ParamMeta(
                p.name,
                p.default is not p.empty,
                p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD),
            )
            for p in sig.parameters.values()
        ]

    def invoke(self, fn, args=(), named=None, *, name=None, label='Function call',
               method=False, raw=False):
        """
        Call anything callable with positional and named arguments. Errors
        that are not ReplErrors are reported as a failure of label. A by-reference
        builtin's Updated is unwrapped to its result unless raw is set.
        """
        args = list(args)
        named = dict(named or {})
        display_name = name or getattr(fn, '__name__', 'closure')

        if isinstance(fn, ObjectHandle):
            invoke_method = fn.bound_method('__invoke')
            if invoke_method is None:
                raise EvaluationError(
                    label, f'Object of type {fn.class_name()} is not callable'
                )
            fn = invoke_method
        if not is_callable_value(fn):
            raise EvaluationError(
                label, f'Value of type {debug_type(fn)} is not callable'
            )

        try:
            if isinstance(fn, Invocable):
                result = fn.call(args, named)
                return result if raw or not isinstance(result, Updated) else result.result
            sig = self._signature(fn)
            if named:
                if sig is None:
                    what = 'method' if method else 'function'
                    raise EvaluationError(
                        label,
                        f'Cannot use named arguments with {what}: {display_name}'
                    )
                args, named = self._bind_named(sig, args, named, label)
            if sig is not None:
                self._check_arity(sig, args, named, display_name)
            result = fn(*args, **named)
            return result if raw or not isinstance(result, Updated) else result.result
        except ReplError:
            raise
        except RecursionError as e:
            raise EvaluationError(label, f'{label} failed: {e}') from None
        except TypeError as e:
            log.debug('%s %s raised TypeError', label, display_name, exc_info=True)
            raise ReplTypeError(display_name, str(e)) from e
        except Exception as e:
            log.debug('%s %s failed', label, display_name, exc_info=True)
            raise EvaluationError(label, f'{label} failed: {e}') from e

    @staticmethod
    def _signature(fn):
        try:
            return inspect.signature(fn)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _bind_named(sig, args, named, label):
        "turn named arguments for positional-only parameters into positions"
        params = list(sig.parameters.values())
        takes_kwargs = any(p.kind is p.VAR_KEYWORD for p in params)
        args = list(args)
        kwargs = {}
        for key, value in named.items():
            # python keywords such as $class are spelled class_
            p = sig.parameters.get(key) or sig.parameters.get(key + '_')
            if p is None or p.kind is p.VAR_POSITIONAL:
                if takes_kwargs:
                    kwargs[key] = value
                    continue
                raise EvaluationError(label, f'Unknown parameter: {key}')
            if p.kind is not p.POSITIONAL_ONLY:
                kwargs[p.name] = value
                continue
            idx = params.index(p)
            if idx < len(args):
                raise EvaluationError(
                    label, f'Named parameter ${key} overwrites previous argument'
                )
            for skipped in params[len(args):idx]:
                if skipped.default is skipped.empty:
                    raise EvaluationError(
                        label, f'Argument #{len(args) + 1} not passed'
                    )
                args.append(skipped.default)
            args.append(value)
        return args, kwargs

    @staticmethod
    def _check_arity(sig, args, named, name):
        try:
            sig.bind(*args, **named)
        except TypeError:
            params = [
                p for p in sig.parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
            ]
            required = sum(1 for p in params if p.default is p.empty)
            variadic = any(
                p.kind is p.VAR_POSITIONAL for p in sig.parameters.values()
            )
            given = len(args) + len(named)
            if given < required:
                bound, count = ('at least' if variadic or len(params) > required
                                else 'exactly'), required
            else:
                bound, count = ('at most' if len(params) > required
                                else 'exactly'), len(params)
            plural = '' if count == 1 else 's'
            raise ReplTypeError(
                name,
                f'{name}() expects {bound} {count} argument{plural}, {given} given'
            ) from None

    def callable_for(self, value, scope=None):
        """
        The python callable behind a callback value: a closure, an invokable
        object, a function name, 'Class::method', or [object|class, method].
        """
        match value:
            case str() if '::' in value:
                class_name, method = value.split('::', 1)
                return functools.partial(self._static_callback, class_name, method, scope)
            case str():
                fn = self.lookup_function(value)
                if fn is None:
                    raise EvaluationError(
                        'Callback', f'Function not found: {value}'
                    )
                return fn
            case PhpArray() if len(value) == 2:
                target, method = value.to_list()
                if isinstance(target, str):
                    return functools.partial(self._static_callback, target, method, scope)
                return functools.partial(self._method_callback, target, method, scope)
            case ObjectHandle():
                method = value.bound_method('__invoke')
                if method is not None:
                    return method
            case _ if is_callable_value(value):
                return value
        raise EvaluationError(
            'Callback', f'Value of type {debug_type(value)} is not callable'
        )

    def _static_callback(self, class_name, method, scope, *args, **named):
        return self.call_static(class_name, method, args, named, scope=scope)

    def _method_callback(self, obj, method, scope, *args, **named):
        return self.call_method(obj, method, args, named, scope=scope)

    def call_callback(self, value, *args):
        "what array_map and friends use to call back into the program"
        return self.invoke(self.callable_for(value), args, label='Callback')

    # Functions and constants

    def lookup_function(self, name: str):
        key = name.lstrip('\\').lower()
        return self.user_functions.get(key) or self.functions.get(key)

    def function_exists(self, name: str) -> bool:
        return self.lookup_function(name) is not None

    def is_host_function(self, name: str) -> bool:
        return name.lstrip('\\').lower() in self.functions

    def define_user_function(self, name: str, fn):
        self.user_functions[name.lstrip('\\').lower()] = fn

    def call_function(self, name: str, args=(), named=None):
        fn = self.lookup_function(name)
        if fn is None:
            raise EvaluationError('FuncCall', f'Function not found: {name}')
        return self.invoke(fn, args, named, name=name.lstrip('\\'))

    def constant_exists(self, name: str) -> bool:
        return name.lstrip('\\') in self.constants

    def get_constant(self, name: str):
        try:
            return self.constants[name.lstrip('\\')]
        except KeyError:
            raise EvaluationError(
                'ConstFetch', f'Undefined constant "{name}"'
            ) from None

    def define_constant(self, name: str, value):
        name = name.lstrip('\\')
        if name in self.constants:
            raise EvaluationError('Const', f'Constant {name} already defined')
        self.constants[name] = value

    # Classes

    def class_info(self, cls) -> ClassInfo:
        if isinstance(cls, ClassInfo):
            return cls
        info = self.types.get(cls)
        if info is None:
            raise EvaluationError('Class', f'Class not found: {cls}')
        return info

    def class_exists(self, name: str, kind=None) -> bool:
        return self.types.exists(name, kind)

    def construct(self, cls, args=(), named=None, scope=None):
        info = self.class_info(cls)
        if info.python_class is not None:
            return _php_value(self.invoke(
                info.python_class,
                [_python_value(a) for a in args],
                {k: _python_value(v) for k, v in (named or {}).items()},
                name=info.name, label='Constructor call',
            ))
        if info.kind != 'class':
            raise EvaluationError(
                'New', f'Cannot instantiate {info.kind} {info.name}'
            )
        if info.is_abstract:
            raise EvaluationError(
                'New', f'Cannot instantiate abstract class {info.name}'
            )
        instance = Instance(info, self, info.instance_defaults())
        constructor = info.find_method('__construct')
        if constructor is not None:
            if not _visible(constructor.owner, constructor.visibility, scope):
                raise EvaluationError(
                    'New',
                    f'Call to {constructor.visibility} {info.name}::__construct() '
                    f'from {_scope_description(scope)}'
                )
            self.invoke(
                constructor.bind(instance), args, named,
                name=f'{info.name}::__construct', label='Constructor call',
                method=True,
            )
        return instance

    def new_anonymous_name(self):
        self._anonymous_count += 1
        return f'class@anonymous#{self._anonymous_count}'

    def call_method(self, obj, name: str, args=(), named=None, scope=None):
        if isinstance(obj, Instance):
            return self._call_instance_method(obj, name, args, named, scope)
        if obj is None or isinstance(obj, (bool, int, float, str, PhpArray)):
            raise EvaluationError(
                'MethodCall',
                f'Call to a member function {name}() on {debug_type(obj)}'
            )
        if name.lower() == '__invoke' and is_callable_value(obj):
            return self.invoke(obj, args, named, label='Method call')
        try:
            method = getattr(obj, name)
        except AttributeError:
            raise EvaluationError(
                'MethodCall',
                f'Call to undefined method {debug_type(obj)}::{name}()'
            ) from None
        wrap = not isinstance(obj, (Generator, ObjectHandle))
        return self.invoke(
            _wrap_python_function(method) if wrap else method, args, named,
            name=f'{debug_type(obj)}::{name}', label='Method call', method=True,
        )

    def _call_instance_method(self, obj, name, args, named, scope):
        info = obj.info
        method = info.find_method(name)
        if method is None:
            magic = info.find_method('__call')
            if magic is not None:
                return self.invoke(
                    magic.bind(obj), [name, PhpArray.from_list(args)],
                    label='Method call',
                )
            raise EvaluationError(
                'MethodCall',
                f'Call to undefined method {obj.class_name()}::{name}()'
            )
        if not _visible(method.owner, method.visibility, scope):
            raise EvaluationError(
                'MethodCall',
                f'Call to {method.visibility} method '
                f'{obj.class_name()}::{method.name}() from {_scope_description(scope)}'
            )
        if method.is_abstract:
            raise EvaluationError(
                'MethodCall',
                f'Cannot call abstract method {method.owner.name}::{method.name}()'
            )
        fn = method.bind(None, info) if method.is_static else method.bind(obj)
        return self.invoke(
            fn, args, named, name=f'{obj.class_name()}::{method.name}',
            label='Method call', method=True,
        )

    def call_static(self, cls, name: str, args=(), named=None, this=None,
                    scope=None, static_cls=None):
        info = self.class_info(cls)
        if info.python_class is not None:
            try:
                attr = getattr(info.python_class, name)
            except AttributeError:
                raise EvaluationError(
                    'StaticCall', f'Call to undefined method {info.name}::{name}()'
                ) from None
            return self.invoke(
                _wrap_python_function(attr), args, named,
                name=f'{info.name}::{name}', label='Static call', method=True,
            )
        method = info.find_method(name)
        if method is None:
            magic = info.find_method('__callStatic')
            if magic is not None:
                return self.invoke(
                    magic.bind(None, static_cls or info),
                    [name, PhpArray.from_list(args)], label='Static call',
                )
            raise EvaluationError(
                'StaticCall', f'Call to undefined method {info.name}::{name}()'
            )
        if not _visible(method.owner, method.visibility, scope):
            raise EvaluationError(
                'StaticCall',
                f'Call to {method.visibility} method {info.name}::{method.name}() '
                f'from {_scope_description(scope)}'
            )
        if method.is_abstract:
            raise EvaluationError(
                'StaticCall',
                f'Cannot call abstract method {method.owner.name}::{method.name}()'
            )
        if method.is_static:
            fn = method.bind(None, static_cls or info)
        elif this is not None and this.info.is_subclass_of(method.owner.name):
            # parent::m() and self::m() from inside an instance method
            fn = method.bind(this, this.info)
        else:
            raise EvaluationError(
                'StaticCall',
                f'Non-static method {info.name}::{method.name}() '
                'cannot be called statically'
            )
        return self.invoke(
            fn, args, named, name=f'{info.name}::{method.name}',
            label='Static call', method=True,
        )

    # Properties and constants

    def get_property(self, obj, name: str, scope=None):
        if isinstance(obj, Instance):
            prop = obj.info.find_property(name)
            if prop is not None and not _visible(prop.owner, prop.visibility, scope):
                magic = obj.info.find_method('__get')
                if magic is not None:
                    return self.invoke(magic.bind(obj), [name],
                                       label='Property fetch')
                raise EvaluationError(
                    'PropertyFetch',
                    f'Cannot access {prop.visibility} property '
                    f'{obj.class_name()}::${name}'
                )
            if name in obj.props:
                return obj.props[name]
            magic = obj.info.find_method('__get')
            if magic is not None:
                return self.invoke(magic.bind(obj), [name], label='Property fetch')
            if prop is not None:
                raise EvaluationError(
                    'PropertyFetch',
                    f'Typed property {obj.class_name()}::${name} '
                    'must not be accessed before initialization'
                )
            raise EvaluationError(
                'PropertyFetch', f'Undefined property: {obj.class_name()}::${name}'
            )
        if obj is None or isinstance(obj, (bool, int, float, str, PhpArray)):
            raise EvaluationError(
                'PropertyFetch',
                f'Cannot access property on non-object type: {debug_type(obj)}'
            )
        try:
            return _php_value(getattr(obj, name))
        except AttributeError:
            raise EvaluationError(
                'PropertyFetch', f'Undefined property: {debug_type(obj)}::${name}'
            ) from None
        except Exception as e:
            log.debug('property fetch %s failed', name, exc_info=True)
            raise EvaluationError(
                'PropertyFetch', f'Property fetch failed: {e}'
            ) from e

    def has_property(self, obj, name: str) -> bool:
        "isset() on a property: defined and not null"
        if isinstance(obj, Instance):
            if obj.props.get(name) is not None:
                return True
            magic = obj.info.find_method('__isset')
            if magic is not None:
                return bool(self.invoke(magic.bind(obj), [name]))
            return False
        if obj is None or isinstance(obj, (bool, int, float, str, PhpArray)):
            return False
        return getattr(obj, name, None) is not None

    def set_property(self, obj, name: str, value, scope=None):
        if isinstance(obj, Instance):
            prop = obj.info.find_property(name)
            if prop is None and name not in obj.props:
                magic = obj.info.find_method('__set')
                if magic is not None:
                    self.invoke(magic.bind(obj), [name, value],
                                label='Property assignment')
                    return value
            if prop is not None:
                if not _visible(prop.owner, prop.visibility, scope):
                    raise EvaluationError(
                        'PropertyFetch',
                        f'Cannot modify {prop.visibility} property '
                        f'{obj.class_name()}::${name}'
                    )
                if 'readonly' in prop.modifiers and (
                        name in obj.props or scope is not prop.owner):
                    raise EvaluationError(
                        'PropertyFetch',
                        f'Cannot modify readonly property {obj.class_name()}::${name}'
                    )
            obj.props[name] = value
            return value
        if obj is None or isinstance(obj, (bool, int, float, str, PhpArray)):
            raise EvaluationError(
                'PropertyFetch',
                f'Cannot access property on non-object type: {debug_type(obj)}'
            )
        try:
            setattr(obj, name, _python_value(value))
        except Exception as e:
            raise EvaluationError(
                'PropertyFetch', f'Property assignment failed: {e}'
            ) from e
        return value

    def unset_property(self, obj, name: str):
        if isinstance(obj, Instance):
            obj.props.pop(name, None)

    def get_static_property(self, cls, name: str, scope=None):
        info = self.class_info(cls)
        owner = info.find_static_owner(name)
        if owner is None:
            raise EvaluationError(
                'StaticPropertyFetch',
                f'Access to undeclared static property {info.name}::${name}'
            )
        prop = owner.static_properties[name]
        if not _visible(owner, prop.visibility, scope):
            raise EvaluationError(
                'StaticPropertyFetch',
                f'Cannot access {prop.visibility} property {info.name}::${name}'
            )
        return owner.static_values[name]

    def set_static_property(self, cls, name: str, value, scope=None):
        info = self.class_info(cls)
        owner = info.find_static_owner(name)
        if owner is None:
            raise EvaluationError(
                'StaticPropertyFetch',
                f'Access to undeclared static property {info.name}::${name}'
            )
        prop = owner.static_properties[name]
        if not _visible(owner, prop.visibility, scope):
            raise EvaluationError(
                'StaticPropertyFetch',
                f'Cannot access {prop.visibility} property {info.name}::${name}'
            )
        owner.static_values[name] = value
        return value

    def class_constant(self, cls, name: str):
        info = self.class_info(cls)
        if name in info.cases:
            return info.cases[name]
        if info.python_class is not None:
            try:
                return _php_value(getattr(info.python_class, name))
            except AttributeError:
                pass
        found, value = info.find_constant(name)
        if not found:
            raise EvaluationError(
                'ClassConstFetch', f'Undefined constant {info.name}::{name}'
            )
        return value

    def instanceof(self, obj, type_name: str) -> bool:
        lowered = type_name.lstrip('\\').lower()
        if isinstance(obj, Instance):
            if lowered == 'stringable' and obj.info.find_method('__toString'):
                return True
            return obj.info.is_subclass_of(lowered)
        if isinstance(obj, Generator):
            return lowered in ('generator', 'traversable', 'iterator')
        if is_callable_value(obj) and not isinstance(obj, ObjectHandle):
            if lowered == 'closure':
                return True
        info = self.types.get(lowered)
        if info is not None and info.python_class is not None:
            return isinstance(obj, info.python_class)
        return False

    def iterate(self, value):
        "(key, value) pairs for foreach, spreads and iterator_to_array"
        match value:
            case PhpArray() | Generator():
                yield from value.items()
            case Instance() if value.info.is_subclass_of('IteratorAggregate'):
                yield from self.iterate(self.call_method(value, 'getIterator'))
            case Instance() if value.info.is_subclass_of('Iterator'):
                self.call_method(value, 'rewind')
                while self.call_method(value, 'valid'):
                    yield (self.call_method(value, 'key'),
                           self.call_method(value, 'current'))
                    self.call_method(value, 'next')
            case Instance():
                for name, v, visibility, _ in value.properties():
                    if visibility == 'public':
                        yield name, v
            case dict():
                for k, v in value.items():
                    yield k, _php_value(v)
            case None | bool() | int() | float() | str():
                raise EvaluationError(
                    'Foreach',
                    'foreach() argument must be of type array|object, '
                    f'{debug_type(value)} given'
                )
            case _:
                try:
                    items = iter(value)
                except TypeError:
                    raise EvaluationError(
                        'Foreach',
                        f'Object of type {debug_type(value)} is not iterable'
                    ) from None
                for i, v in enumerate(items):
                    yield i, _php_value(v)

    def clone(self, obj):
        if isinstance(obj, Instance):
            if obj.is_enum_case():
                raise EvaluationError(
                    'Clone',
                    f'Trying to clone an uncloneable object of class {obj.class_name()}'
                )
            copied = Instance(obj.info, self, obj.props)
            magic = obj.info.find_method('__clone')
            if magic is not None:
                self.invoke(magic.bind(copied), label='Clone')
            return copied
        if obj is None or isinstance(obj, (bool, int, float, str, PhpArray)):
            raise EvaluationError(
                'Clone', f'Cannot clone non-object ({debug_type(obj)})'
            )
        try:
            return copy.copy(obj)
        except Exception as e:
            raise EvaluationError('Clone', f'Clone failed: {e}') from e

    # Declarations

    def declare(self, info: ClassInfo) -> ClassInfo:
        """
        Check a new class-like declaration against what is already known,
        link it to its parents and register it. Nothing is registered
        unless every check passes.
        """
        if not info.anonymous and self.types.exists(info.name):
            raise EvaluationError(info.name, _ALREADY_DECLARED[info.kind](info.name))

        parent = None
        if info.parent_name is not None:
            parent = self.types.get(info.parent_name)
            if parent is None or parent.kind != 'class':
                raise EvaluationError(
                    info.name,
                    f'Cannot extend non-existent class: {info.parent_name}'
                )
            if 'final' in parent.modifiers:
                raise EvaluationError(
                    info.name,
                    f'Class {info.name} cannot extend final class {parent.name}'
                )

        interfaces = []
        for name in info.interface_names:
            iface = self.types.get(name)
            if iface is None or iface.kind != 'interface':
                if info.kind == 'interface':
                    raise EvaluationError(
                        info.name, f'Cannot extend non-existent interface: {name}'
                    )
                raise EvaluationError(
                    info.name, f'Cannot implement non-existent interface: {name}'
                )
            interfaces.append(iface)

        traits = []
        for name in info.trait_names:
            trait = self.types.get(name)
            if trait is None or trait.kind != 'trait':
                raise EvaluationError(info.name, f"Trait '{name}' not found")
            traits.append(trait)

        if info.kind == 'enum':
            self._check_enum_cases(info)
            interfaces.append(self.types.get(
                'BackedEnum' if info.backing_type else 'UnitEnum'
            ))

        linked = replace(
            info,
            parent=parent,
            interfaces=tuple(interfaces),
            methods=dict(info.methods),
            properties=dict(info.properties),
            static_properties=dict(info.static_properties),
            static_values=dict(info.static_values),
            constants=dict(info.constants),
        )
        for member in linked.methods.values():
            member.owner = linked
        for prop in (*linked.properties.values(), *linked.static_properties.values()):
            prop.owner = linked
        for trait in traits:
            self._use_trait(linked, trait)
        if parent is not None:
            self._check_final_methods(linked, parent)

        if linked.kind == 'enum':
            self._add_enum_members(linked)
        elif linked.kind == 'class' and not linked.is_abstract:
            missing = linked.all_abstract_methods()
            if missing:
                plural = 's' if len(missing) > 1 else ''
                names = ', '.join(f'{m.owner.name}::{m.name}' for m in missing)
                raise EvaluationError(
                    info.name,
                    f'Class {info.name} contains {len(missing)} abstract '
                    f'method{plural} and must therefore be declared abstract '
                    f'or implement the remaining methods ({names})'
                )

        if not linked.anonymous:
            self.types.register(linked)
        log.debug('declared %s %s', linked.kind, linked.name)
        return linked

    @staticmethod
    def _use_trait(info, trait):
        for key, method in trait.methods.items():
            if key not in info.methods or info.methods[key].is_abstract:
                info.methods[key] = replace(method, owner=info)
        for name, prop in trait.properties.items():
            info.properties.setdefault(name, replace(prop, owner=info))
        for name, prop in trait.static_properties.items():
            if name not in info.static_properties:
                info.static_properties[name] = replace(prop, owner=info)
                info.static_values[name] = trait.static_values[name]
        for name, value in trait.constants.items():
            info.constants.setdefault(name, value)

    @staticmethod
    def _check_final_methods(info, parent):
        for key, method in info.methods.items():
            inherited = parent.find_method(key)
            if inherited is not None and 'final' in inherited.modifiers:
                raise EvaluationError(
                    info.name,
                    'Cannot override final method '
                    f'{inherited.owner.name}::{inherited.name}()'
                )

    @staticmethod
    def _check_enum_cases(info):
        backing = info.backing_type
        if backing not in (None, 'int', 'string'):
            raise EvaluationError(
                info.name,
                f'Enum backing type must be int or string, {backing} given'
            )
        seen = []
        for case, value in info.case_values.items():
            if backing is None and value is not None:
                raise EvaluationError(
                    info.name,
                    f'Case {case} of non-backed enum {info.name} must not have a value'
                )
            if backing is not None and value is None:
                raise EvaluationError(
                    info.name,
                    f'Case {case} of backed enum {info.name} must have a value'
                )
            if backing is not None and debug_type(value) != backing:
                raise EvaluationError(
                    info.name,
                    f'Enum case type {debug_type(value)} does not match enum '
                    f'backing type {backing}'
                )
            if value is not None and any(strict_equals(value, v) for v in seen):
                raise EvaluationError(
                    info.name, f'Duplicate value in enum {info.name} for cases'
                )
            seen.append(value)

    def _add_enum_members(self, info):
        info.add_property('name', None, ['public', 'readonly'])
        if info.backing_type is not None:
            info.add_property('value', None, ['public', 'readonly'])
        for case, value in info.case_values.items():
            props = {'name': case}
            if info.backing_type is not None:
                props['value'] = value
            info.cases[case] = Instance(info, self, props, case=case)

        info.add_method(
            'cases',
            lambda cls: PhpArray.from_list(cls.cases.values()),
            ['public', 'static'], native=True,
        )
        if info.backing_type is not None:
            info.add_method('from', _enum_from, ['public', 'static'], native=True)
            info.add_method('tryFrom', _enum_try_from, ['public', 'static'],
                            native=True)

    # Python interop

    def import_python(self, spec: str):
        """
        The :import command. spec is module/name, module/* or
        package::module/name. Returns the (kind, dotted name) of everything
        imported.
        """
        package, sep, rest = spec.partition('::')
        if not sep:
            package, rest = None, spec
        module_name, slash, member = rest.partition('/')
        if not slash or not module_name or not member:
            raise ReplError(
                spec,
                'Invalid import format. Use :import module/function '
                'or :import package::module/function'
            )
        if package is not None:
            module_name = f'{package}.{module_name}'
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            log.debug('import of %s failed', module_name, exc_info=True)
            raise ReplError(spec, f"Module '{module_name}' not found") from e

        if member == '*':
            names = [
                n for n in getattr(module, '__all__', dir(module))
                if not n.startswith('_') and callable(getattr(module, n, None))
                and not inspect.ismodule(getattr(module, n))
            ]
        else:
            if not callable(getattr(module, member, None)):
                raise ReplError(
                    spec, f"Function '{member}' not found in module '{module_name}'"
                )
            names = [member]

        imported = []
        for name in names:
            obj = getattr(module, name)
            if isinstance(obj, type):
                self.types.register(
                    ClassInfo(name, python_class=obj, interface_names=())
                )
                imported.append(('class', f'{module_name}.{name}'))
            else:
                self.functions[name.lower()] = _wrap_python_function(obj)
                imported.append(('function', f'{module_name}.{name}'))
        log.debug('imported %s from %s', names, module_name)
        return imported


_ALREADY_DECLARED = {
    'class': lambda name: f"Class '{name}' is already defined",
    'interface': lambda name: f'Interface {name} already exists',
    'trait': lambda name: f'Trait {name} already exists',
    'enum': lambda name: f'Enum {name} already exists',
}


def _backing_key(cls, value):
    if cls.backing_type == 'int' and isinstance(value, (str, float)):
        try:
            return to_int(value)
        except ReplError:
            return value
    if cls.backing_type == 'string' and isinstance(value, int):
        return str(value)
    return value


def _enum_try_from(cls, value):
    key = _backing_key(cls, value)
    for case in cls.cases.values():
        if strict_equals(case.props['value'], key):
            return case
    return None


def _enum_from(cls, value):
    case = _enum_try_from(cls, value)
    if case is None:
        raise EvaluationError(
            cls.name,
            f'{format_value(value)} is not a valid backing value for enum {cls.name}'
        )
    return case
