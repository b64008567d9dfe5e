"""
phrepl.ast

The syntax tree the parser produces and the evaluator consumes. Nodes are
frozen, so a parsed fragment can be shared by any number of sessions,
closures and generators.
"""
from dataclasses import dataclass
from typing import Any, Optional


class Node:
    __slots__ = ()

    @property
    def kind(self):
        "the node kind named in error messages"
        return type(self).__name__


# -------------
#  Types
# -------------

@dataclass(frozen=True, slots=True)
class NamedType(Node):
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True, slots=True)
class NullableType(Node):
    inner: Node

    def __str__(self):
        return f'?{self.inner}'


@dataclass(frozen=True, slots=True)
class UnionType(Node):
    types: tuple

    def __str__(self):
        return '|'.join(map(str, self.types))


@dataclass(frozen=True, slots=True)
class IntersectionType(Node):
    types: tuple

    def __str__(self):
        return '&'.join(map(str, self.types))


# ---------------
#  Expressions
# ---------------

@dataclass(frozen=True, slots=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True, slots=True)
class InterpolatedString(Node):
    parts: tuple  # str | Node


@dataclass(frozen=True, slots=True)
class ConstFetch(Node):
    "a bare name: a constant, or a function or class name depending on use"
    name: str


@dataclass(frozen=True, slots=True)
class MagicConst(Node):
    name: str
    line: int


@dataclass(frozen=True, slots=True)
class Variable(Node):
    name: str  # without the $


@dataclass(frozen=True, slots=True)
class VariableVariable(Node):
    name_expr: Node


@dataclass(frozen=True, slots=True)
class ArrayItem(Node):
    value: Node
    key: Optional[Node] = None
    spread: bool = False
    by_ref: bool = False


@dataclass(frozen=True, slots=True)
class ArrayLiteral(Node):
    items: tuple  # ArrayItem | None, None being a skipped list() slot
    is_list_construct: bool = False


@dataclass(frozen=True, slots=True)
class Assign(Node):
    target: Node
    value: Node


@dataclass(frozen=True, slots=True)
class CompoundAssign(Node):
    op: str  # the binary operator, e.g. '+' for +=
    target: Node
    value: Node


@dataclass(frozen=True, slots=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class UnaryOp(Node):
    op: str
    operand: Node


@dataclass(frozen=True, slots=True)
class Cast(Node):
    type: str
    expr: Node


@dataclass(frozen=True, slots=True)
class IncDec(Node):
    op: str  # '++' or '--'
    prefix: bool
    target: Node


@dataclass(frozen=True, slots=True)
class Ternary(Node):
    cond: Node
    then: Optional[Node]  # None for the short form a ?: b
    else_: Node


@dataclass(frozen=True, slots=True)
class MatchArm(Node):
    conds: Optional[tuple]  # None for default
    body: Node


@dataclass(frozen=True, slots=True)
class Match(Node):
    subject: Node
    arms: tuple


@dataclass(frozen=True, slots=True)
class Param(Node):
    name: str
    type: Optional[Node] = None
    default: Optional[Node] = None
    variadic: bool = False
    by_ref: bool = False
    modifiers: tuple = ()  # constructor promotion


@dataclass(frozen=True, slots=True)
class ClosureUse(Node):
    name: str
    by_ref: bool = False


@dataclass(frozen=True, slots=True)
class Closure(Node):
    params: tuple
    uses: tuple
    body: tuple
    return_type: Optional[Node] = None
    static: bool = False


@dataclass(frozen=True, slots=True)
class ArrowFunction(Node):
    params: tuple
    expr: Node
    return_type: Optional[Node] = None
    static: bool = False


@dataclass(frozen=True, slots=True)
class Argument(Node):
    value: Node
    name: Optional[str] = None
    spread: bool = False


@dataclass(frozen=True, slots=True)
class Call(Node):
    callee: Node
    args: tuple


@dataclass(frozen=True, slots=True)
class MethodCall(Node):
    obj: Node
    name: Any  # str or an expression for $o->$name()
    args: tuple
    nullsafe: bool = False


@dataclass(frozen=True, slots=True)
class StaticCall(Node):
    cls: Node
    name: Any
    args: tuple


@dataclass(frozen=True, slots=True)
class FirstClassCallable(Node):
    "f(...), $o->m(...) or C::m(...): target is the call without arguments"
    target: Node


@dataclass(frozen=True, slots=True)
class PropertyFetch(Node):
    obj: Node
    name: Any
    nullsafe: bool = False


@dataclass(frozen=True, slots=True)
class StaticPropertyFetch(Node):
    cls: Node
    name: str


@dataclass(frozen=True, slots=True)
class ClassConstFetch(Node):
    cls: Node
    name: str


@dataclass(frozen=True, slots=True)
class Index(Node):
    obj: Node
    index: Optional[Node]  # None for $a[] = ...


@dataclass(frozen=True, slots=True)
class New(Node):
    cls: Node
    args: tuple


@dataclass(frozen=True, slots=True)
class NewAnonymous(Node):
    decl: Node  # a ClassDecl with no name
    args: tuple


@dataclass(frozen=True, slots=True)
class Clone(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Instanceof(Node):
    expr: Node
    cls: Node


@dataclass(frozen=True, slots=True)
class ErrorSuppress(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Throw(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Print(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Yield(Node):
    value: Optional[Node] = None
    key: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class YieldFrom(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Isset(Node):
    exprs: tuple


@dataclass(frozen=True, slots=True)
class Empty(Node):
    expr: Node


# --------------
#  Statements
# --------------

@dataclass(frozen=True, slots=True)
class ExprStmt(Node):
    expr: Node


@dataclass(frozen=True, slots=True)
class Echo(Node):
    exprs: tuple


@dataclass(frozen=True, slots=True)
class Return(Node):
    expr: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class Break(Node):
    levels: int = 1


@dataclass(frozen=True, slots=True)
class Continue(Node):
    levels: int = 1


@dataclass(frozen=True, slots=True)
class Block(Node):
    stmts: tuple


@dataclass(frozen=True, slots=True)
class Nop(Node):
    pass


@dataclass(frozen=True, slots=True)
class If(Node):
    cond: Node
    body: Node
    elifs: tuple = ()  # (cond, body) pairs
    else_: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class While(Node):
    cond: Node
    body: Node


@dataclass(frozen=True, slots=True)
class DoWhile(Node):
    body: Node
    cond: Node


@dataclass(frozen=True, slots=True)
class For(Node):
    init: tuple
    cond: tuple
    step: tuple
    body: Node


@dataclass(frozen=True, slots=True)
class Foreach(Node):
    subject: Node
    value: Node
    body: Node
    key: Optional[Node] = None
    by_ref: bool = False


@dataclass(frozen=True, slots=True)
class FunctionDecl(Node):
    name: str
    params: tuple
    body: tuple
    return_type: Optional[Node] = None
    by_ref: bool = False


@dataclass(frozen=True, slots=True)
class ConstDecl(Node):
    items: tuple  # (name, expr) pairs


@dataclass(frozen=True, slots=True)
class NamespaceDecl(Node):
    name: Optional[str]
    body: Optional[tuple] = None  # the statements of `namespace X { ... }`


@dataclass(frozen=True, slots=True)
class UseItem(Node):
    name: str
    alias: Optional[str] = None
    kind: str = 'class'  # class, function or const


@dataclass(frozen=True, slots=True)
class Use(Node):
    items: tuple


# ---------------------
#  Class-like members
# ---------------------

@dataclass(frozen=True, slots=True)
class PropertyDecl(Node):
    name: str
    default: Optional[Node] = None
    modifiers: tuple = ()
    type: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class ClassConstDecl(Node):
    name: str
    expr: Node
    modifiers: tuple = ()


@dataclass(frozen=True, slots=True)
class MethodDecl(Node):
    name: str
    params: tuple
    body: Optional[tuple]  # None for abstract and interface methods
    modifiers: tuple = ()
    return_type: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class TraitUse(Node):
    names: tuple


@dataclass(frozen=True, slots=True)
class EnumCaseDecl(Node):
    name: str
    value: Optional[Node] = None


@dataclass(frozen=True, slots=True)
class ClassDecl(Node):
    name: Optional[str]
    members: tuple
    parent: Optional[str] = None
    interfaces: tuple = ()
    modifiers: tuple = ()


@dataclass(frozen=True, slots=True)
class InterfaceDecl(Node):
    name: str
    members: tuple
    parents: tuple = ()


@dataclass(frozen=True, slots=True)
class TraitDecl(Node):
    name: str
    members: tuple


@dataclass(frozen=True, slots=True)
class EnumDecl(Node):
    name: str
    members: tuple
    backing_type: Optional[Node] = None
    interfaces: tuple = ()


@dataclass(frozen=True, slots=True)
class Fragment(Node):
    "everything parsed from one REPL input"
    stmts: tuple
    source: str = ''


# ----------------
#  Tree queries
# ----------------

def children(node):
    "direct sub-nodes, looking through tuples, used by contains_yield"
    for name in node.__dataclass_fields__:
        value = getattr(node, name)
        if isinstance(value, Node):
            yield value
        elif isinstance(value, tuple):
            for x in value:
                if isinstance(x, Node):
                    yield x
                elif isinstance(x, tuple):
                    yield from (y for y in x if isinstance(y, Node))


def contains_yield(node) -> bool:
    """
    Whether node has a yield of its own. Functions, closures and classes
    nested in it are not looked into, as they are separate bodies.
    """
    match node:
        case Yield() | YieldFrom():
            return True
        case Closure() | ArrowFunction() | FunctionDecl() | ClassDecl() \
                | NewAnonymous():
            return False
    return any(contains_yield(c) for c in children(node))


def body_contains_yield(stmts) -> bool:
    return any(contains_yield(s) for s in stmts)
