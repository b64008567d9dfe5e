"""
phrepl.parser

Text to syntax tree. The grammar lives in php.lark next to this module; the
_AstBuilder transformer below turns lark's parse tree into the frozen nodes
of phrepl.ast.
"""
import logging
import re
from collections import namedtuple
from pathlib import Path

from lark import Lark, Token, Transformer
from lark.exceptions import (
    UnexpectedCharacters, UnexpectedInput, UnexpectedToken, VisitError,
)

from phrepl import ast
from phrepl.exceptions import ParseError
from phrepl.result import attempt

log = logging.getLogger(__name__)

_GRAMMAR_FILE = Path(__file__).with_name('php.lark')
_lark = None


def _get_lark():
    global _lark
    if _lark is None:
        _lark = Lark(
            _GRAMMAR_FILE.read_text(),
            parser='lalr',
            lexer='contextual',
            start=['start', 'expr'],
            maybe_placeholders=False,
        )
    return _lark


# ------------------------
#  Source preprocessing
# ------------------------

_OPEN_TAG = re.compile(r'\A\s*<\?php\b', re.IGNORECASE)
_CLOSE_TAG = re.compile(r'\?>\s*\Z')
_HEREDOC = re.compile(r'<<<[ \t]*(["\']?)([A-Za-z_][A-Za-z0-9_]*)\1[ \t]*\r?\n')


def strip_tags(text: str) -> str:
    text = _OPEN_TAG.sub('', text, count=1)
    return _CLOSE_TAG.sub('', text)


def _quote_double(body):
    "escape the bare double quotes of a heredoc body"
    out = []
    i = 0
    while i < len(body):
        c = body[i]
        if c == '\\' and i + 1 < len(body):
            out.append(body[i:i + 2])
            i += 2
            continue
        out.append('\\"' if c == '"' else c)
        i += 1
    return '"' + ''.join(out) + '"'


def _quote_single(body):
    return "'" + body.replace('\\', '\\\\').replace("'", "\\'") + "'"


def rewrite_heredocs(text: str) -> str:
    """
    Replace every heredoc and nowdoc with an equivalent quoted string. The
    closing identifier's indentation is removed from each body line, and
    the number of lines is kept so line numbers stay right.
    """
    out = []
    pos = 0
    while (m := _HEREDOC.search(text, pos)):
        quote, ident = m.group(1), m.group(2)
        closing = re.compile(
            r'^([ \t]*)' + re.escape(ident) + r'\b', re.MULTILINE
        )
        c = closing.search(text, m.end())
        if c is None:
            break
        body = text[m.end():c.start()]
        if body.endswith('\n'):
            body = body[:-1]
        if body.endswith('\r'):
            body = body[:-1]
        indent = c.group(1)
        if indent:
            body = '\n'.join(
                line[len(indent):] if line.startswith(indent)
                else line.lstrip(' \t')
                for line in body.split('\n')
            )
        literal = _quote_single(body) if quote == "'" else _quote_double(body)
        original = text[m.start():c.end()]
        padding = '\n' * (original.count('\n') - literal.count('\n'))
        out.append(text[pos:m.start()])
        out.append(literal + padding)
        pos = c.end()
    out.append(text[pos:])
    return ''.join(out)


# -----------------------
#  String literal bodies
# -----------------------

_SIMPLE_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', 'v': '\v', 'e': '\x1b', 'f': '\f',
    '\\': '\\', '$': '$', '"': '"',
}
_OCTAL = re.compile(r'[0-7]{1,3}')
_HEX = re.compile(r'x([0-9A-Fa-f]{1,2})')
_UNICODE = re.compile(r'u\{([0-9A-Fa-f]+)\}')
_IDENT = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_SIMPLE_INDEX = re.compile(r'\[(-?\d+|[A-Za-z_][A-Za-z0-9_]*|\$[A-Za-z_][A-Za-z0-9_]*)\]')
_SIMPLE_PROPERTY = re.compile(r'->([A-Za-z_][A-Za-z0-9_]*)')


def unescape_single(body: str) -> str:
    return re.sub(r"\\([\\'])", r'\1', body)


def _closing_brace(text, start):
    "index of the } matching the { at start, skipping quoted strings"
    depth = 0
    i = start
    quote = None
    while i < len(text):
        c = text[i]
        if quote:
            if c == '\\':
                i += 2
                continue
            if c == quote:
                quote = None
        elif c in '\'"':
            quote = c
        elif c == '{':
            depth += 1
        elif c == '}':
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _read_escape(body, i):
    "(text, next index) for the escape sequence whose backslash is at i"
    nxt = body[i + 1]
    if nxt in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[nxt], i + 2
    if (m := _OCTAL.match(body, i + 1)):
        return chr(int(m.group(0), 8) & 0xff), m.end()
    if (m := _HEX.match(body, i + 1)):
        return chr(int(m.group(1), 16)), m.end()
    if (m := _UNICODE.match(body, i + 1)):
        return chr(int(m.group(1), 16)), m.end()
    return body[i:i + 2], i + 2


def interpolate(body: str, parse_expr) -> ast.Node:
    """
    Split the body of a double quoted string into literal text and the
    embedded variables: $v, $v[k], $v->p, {$expr} and ${name}.
    """
    parts = []
    buf = []

    def flush():
        if buf:
            parts.append(''.join(buf))
            buf.clear()

    i = 0
    n = len(body)
    while i < n:
        c = body[i]
        if c == '\\' and i + 1 < n:
            text, i = _read_escape(body, i)
            buf.append(text)
        elif c == '$' and i + 1 < n and _IDENT.match(body, i + 1):
            m = _IDENT.match(body, i + 1)
            node = ast.Variable(m.group(0))
            i = m.end()
            if (m := _SIMPLE_INDEX.match(body, i)):
                key = m.group(1)
                if key.startswith('$'):
                    index = ast.Variable(key[1:])
                elif re.fullmatch(r'-?\d+', key):
                    index = ast.Literal(int(key))
                else:
                    index = ast.Literal(key)
                node = ast.Index(node, index)
                i = m.end()
            elif (m := _SIMPLE_PROPERTY.match(body, i)):
                node = ast.PropertyFetch(node, m.group(1))
                i = m.end()
            flush()
            parts.append(node)
        elif c == '{' and body.startswith('{$', i):
            end = _closing_brace(body, i)
            if end < 0:
                raise ParseError(body, 'Syntax error, unterminated {$ in string')
            flush()
            parts.append(parse_expr(body[i + 1:end]))
            i = end + 1
        elif c == '$' and body.startswith('${', i):
            end = _closing_brace(body, i + 1)
            if end < 0:
                raise ParseError(body, 'Syntax error, unterminated ${ in string')
            inner = body[i + 2:end]
            flush()
            if _IDENT.fullmatch(inner):
                parts.append(ast.Variable(inner))
            else:
                parts.append(ast.VariableVariable(parse_expr(inner)))
            i = end + 1
        else:
            buf.append(c)
            i += 1
    flush()

    if not parts:
        return ast.Literal('')
    if len(parts) == 1 and isinstance(parts[0], str):
        return ast.Literal(parts[0])
    return ast.InterpolatedString(tuple(parts))


def parse_int(text: str):
    digits = text.replace('_', '')
    lower = digits.lower()
    if lower.startswith('0x'):
        value = int(digits[2:], 16)
    elif lower.startswith('0b'):
        value = int(digits[2:], 2)
    elif lower.startswith('0o'):
        value = int(digits[2:], 8)
    elif len(digits) > 1 and digits.startswith('0'):
        value = int(digits, 8)
    else:
        value = int(digits)
    if value > 2**63 - 1:
        # integer overflow turns into a float, as in PHP
        return float(value)
    return value


# ------------------------
#  Parse tree to syntax tree
# ------------------------

_Tagged = namedtuple('_Tagged', 'tag value')

_BINARY_OPS = {
    'logical_or': 'or', 'logical_xor': 'xor', 'logical_and': 'and',
    'coalesce': '??', 'bool_or': '||', 'bool_and': '&&',
    'bit_or': '|', 'bit_xor': '^', 'bit_and': '&',
    'eq': '==', 'ne': '!=', 'identical': '===', 'not_identical': '!==',
    'spaceship': '<=>',
    'lt': '<', 'le': '<=', 'gt': '>', 'ge': '>=',
    'concat': '.', 'shl': '<<', 'shr': '>>',
    'add': '+', 'sub': '-', 'mul': '*', 'div': '/', 'mod': '%', 'pow': '**',
}
_UNARY_OPS = {'not_': '!', 'neg': '-', 'pos': '+', 'bit_not': '~'}
_CAST_NAMES = {
    'integer': 'int', 'double': 'float', 'real': 'float',
    'boolean': 'bool', 'binary': 'string',
}
_MAGIC_CONSTANTS = frozenset({
    '__LINE__', '__FILE__', '__DIR__', '__FUNCTION__', '__CLASS__',
    '__METHOD__', '__NAMESPACE__',
})


def _split(items):
    "separate tagged values from the rest, keeping the rest in order"
    tags = {}
    rest = []
    for item in items:
        if isinstance(item, _Tagged):
            tags[item.tag] = item.value
        else:
            rest.append(item)
    return tags, rest


def _flatten_members(members):
    result = []
    for m in members:
        if isinstance(m, _Tagged):
            result.extend(m.value)
        else:
            result.append(m)
    return tuple(result)


class _AstBuilder(Transformer):

    def __init__(self, parse_expr):
        super().__init__()
        self.parse_expr = parse_expr

    def __default__(self, data, children, meta):
        if data in _BINARY_OPS:
            left, right = children
            return ast.BinaryOp(_BINARY_OPS[data], left, right)
        if data in _UNARY_OPS:
            return ast.UnaryOp(_UNARY_OPS[data], children[0])
        raise ParseError('', f'Unsupported syntax: {data}')

    # Statements

    def start(self, items):
        return tuple(items)

    def block(self, items):
        return ast.Block(tuple(items))

    def if_stmt(self, items):
        cond, body, *rest = items
        elifs = tuple(
            (clause[1], clause[2]) for clause in rest if clause[0] == 'elif'
        )
        else_ = next((clause[1] for clause in rest if clause[0] == 'else'), None)
        return ast.If(cond, body, elifs, else_)

    def elseif_clause(self, items):
        return ('elif', items[0], items[1])

    def else_clause(self, items):
        return ('else', items[0])

    def while_stmt(self, items):
        return ast.While(items[0], items[1])

    def do_while(self, items):
        return ast.DoWhile(items[0], items[1])

    def expr_list(self, items):
        return tuple(items)

    def for_stmt(self, items):
        init, cond, step, body = items
        return ast.For(init, cond, step, body)

    def foreach_ref(self, items):
        return ('ref', items[-1])

    def _foreach(self, subject, key, target, body):
        by_ref = isinstance(target, tuple)
        if by_ref:
            target = target[1]
        return ast.Foreach(subject, target, body, key=key, by_ref=by_ref)

    def foreach_stmt(self, items):
        subject, target, body = items
        return self._foreach(subject, None, target, body)

    def foreach_kv_stmt(self, items):
        subject, key, target, body = items
        return self._foreach(subject, key, target, body)

    def echo(self, items):
        return ast.Echo(tuple(items))

    def return_stmt(self, items):
        return ast.Return(items[0] if items else None)

    def break_stmt(self, items):
        return ast.Break(parse_int(items[0]) if items else 1)

    def continue_stmt(self, items):
        return ast.Continue(parse_int(items[0]) if items else 1)

    def const_item(self, items):
        name, expr = items
        return (str(name), expr)

    def const_stmt(self, items):
        return ast.ConstDecl(tuple(items))

    def namespace_stmt(self, items):
        return ast.NamespaceDecl(str(items[0]).lstrip('\\'))

    def namespace_block(self, items):
        name, *stmts = items
        return ast.NamespaceDecl(str(name).lstrip('\\'), tuple(stmts))

    def global_namespace_block(self, items):
        return ast.NamespaceDecl(None, tuple(items))

    def use_kind(self, items):
        return _Tagged('kind', str(items[0]).lower())

    def use_item(self, items):
        name = str(items[0]).lstrip('\\')
        alias = str(items[1]) if len(items) > 1 else None
        return ast.UseItem(name, alias)

    def use_stmt(self, items):
        tags, rest = _split(items)
        kind = tags.get('kind', 'class')
        return ast.Use(tuple(
            ast.UseItem(item.name, item.alias, kind) for item in rest
        ))

    def expr_stmt(self, items):
        return ast.ExprStmt(items[0])

    def nop(self, items):
        return ast.Nop()

    # Functions

    def params(self, items):
        return _Tagged('params', tuple(items))

    def param_modifier(self, items):
        return str(items[0]).lower()

    def param_modifiers(self, items):
        return _Tagged('modifiers', tuple(items))

    def param(self, items):
        tags, rest = _split(items)
        type_ = None
        by_ref = variadic = False
        name = None
        default = None
        for item in rest:
            match item:
                case Token(type='BYREF'):
                    by_ref = True
                case Token(type='ELLIPSIS'):
                    variadic = True
                case Token(type='VARIABLE'):
                    name = str(item)[1:]
                case ast.Node() if name is None:
                    type_ = item
                case ast.Node():
                    default = item
        return ast.Param(
            name, type_, default, variadic, by_ref, tags.get('modifiers', ())
        )

    def simple_type(self, items):
        return ast.NamedType(str(items[0]))

    def nullable_type(self, items):
        return ast.NullableType(items[0])

    def union_type(self, items):
        return ast.UnionType(tuple(items))

    def intersection_type(self, items):
        return ast.IntersectionType(tuple(items))

    def return_type(self, items):
        return _Tagged('return', items[0])

    def static_return_type(self, items):
        return _Tagged('return', ast.NamedType('static'))

    def function_decl(self, items):
        tags, rest = _split(items)
        name, *body = rest
        return ast.FunctionDecl(
            str(name), tags['params'], tuple(body), tags.get('return')
        )

    def closure_use(self, items):
        return ast.ClosureUse(str(items[-1])[1:], by_ref=len(items) > 1)

    def closure_uses(self, items):
        return _Tagged('uses', tuple(items))

    def closure(self, items, static=False):
        tags, body = _split(items)
        return ast.Closure(
            tags['params'], tags.get('uses', ()), tuple(body),
            tags.get('return'), static
        )

    def static_closure(self, items):
        return self.closure(items, static=True)

    def arrow_fn(self, items, static=False):
        tags, (expr,) = _split(items)
        return ast.ArrowFunction(tags['params'], expr, tags.get('return'), static)

    def static_arrow_fn(self, items):
        return self.arrow_fn(items, static=True)

    # Classes

    def class_modifier(self, items):
        return str(items[0]).lower()

    def member_modifier(self, items):
        return str(items[0]).lower()

    def class_modifiers(self, items):
        return _Tagged('modifiers', tuple(items))

    def member_modifiers(self, items):
        return _Tagged('modifiers', tuple(items))

    def name_list(self, items):
        return tuple(str(name).lstrip('\\') for name in items)

    def extends(self, items):
        return _Tagged('extends', str(items[0]))

    def implements(self, items):
        return _Tagged('implements', items[0])

    def interface_extends(self, items):
        return _Tagged('parents', items[0])

    def enum_type(self, items):
        return _Tagged('backing', items[0])

    def class_decl(self, items):
        tags, (name, *members) = _split(items)
        return ast.ClassDecl(
            str(name), _flatten_members(members), tags.get('extends'),
            tags.get('implements', ()), tags.get('modifiers', ())
        )

    def interface_decl(self, items):
        tags, (name, *members) = _split(items)
        return ast.InterfaceDecl(
            str(name), _flatten_members(members), tags.get('parents', ())
        )

    def trait_decl(self, items):
        name, *members = items
        return ast.TraitDecl(str(name), _flatten_members(members))

    def enum_decl(self, items):
        tags, (name, *members) = _split(items)
        return ast.EnumDecl(
            str(name), _flatten_members(members), tags.get('backing'),
            tags.get('implements', ())
        )

    def method_body(self, items):
        return _Tagged('body', tuple(items))

    def abstract_body(self, items):
        return _Tagged('body', None)

    def method(self, items):
        tags, (name,) = _split(items)
        return ast.MethodDecl(
            str(name), tags['params'], tags['body'],
            tags.get('modifiers', ()), tags.get('return')
        )

    def class_const(self, items):
        tags, consts = _split(items)
        modifiers = tags.get('modifiers', ())
        return _Tagged('members', tuple(
            ast.ClassConstDecl(name, expr, modifiers) for (name, expr) in consts
        ))

    def property_item(self, items):
        return (str(items[0])[1:], items[1] if len(items) > 1 else None)

    def property(self, items):
        tags, rest = _split(items)
        modifiers = tags.get('modifiers', ('public',))
        type_ = None
        props = []
        for item in rest:
            if isinstance(item, tuple):
                props.append(item)
            else:
                type_ = item
        return _Tagged('members', tuple(
            ast.PropertyDecl(name, default, modifiers, type_)
            for (name, default) in props
        ))

    def trait_use(self, items):
        return ast.TraitUse(items[0])

    def enum_case(self, items):
        return ast.EnumCaseDecl(str(items[0]), items[1] if len(items) > 1 else None)

    # Expressions

    def assign(self, items):
        return ast.Assign(items[0], items[-1])

    def compound_assign(self, items):
        target, op, value = items
        return ast.CompoundAssign(str(op)[:-1], target, value)

    def print(self, items):
        return ast.Print(items[0])

    def throw(self, items):
        return ast.Throw(items[0])

    def yield_empty(self, items):
        return ast.Yield()

    def yield_value(self, items):
        return ast.Yield(items[0])

    def yield_pair(self, items):
        key, value = items
        return ast.Yield(value, key)

    def yield_from(self, items):
        return ast.YieldFrom(items[0])

    def ternary(self, items):
        return ast.Ternary(*items)

    def short_ternary(self, items):
        cond, else_ = items
        return ast.Ternary(cond, None, else_)

    def cast(self, items):
        token, expr = items
        name = re.sub(r'[\s()]', '', str(token)).lower()
        return ast.Cast(_CAST_NAMES.get(name, name), expr)

    def silence(self, items):
        return ast.ErrorSuppress(items[0])

    def clone(self, items):
        return ast.Clone(items[0])

    def pre_inc(self, items):
        return ast.IncDec('++', True, items[0])

    def pre_dec(self, items):
        return ast.IncDec('--', True, items[0])

    def post_inc(self, items):
        return ast.IncDec('++', False, items[0])

    def post_dec(self, items):
        return ast.IncDec('--', False, items[0])

    def instanceof(self, items):
        return ast.Instanceof(items[0], items[1])

    # Postfix

    def arguments(self, items):
        return _Tagged('args', tuple(
            item if isinstance(item, ast.Argument) else ast.Argument(item)
            for item in items
        ))

    def callable_marker(self, items):
        return _Tagged('callable', None)

    def spread_arg(self, items):
        return ast.Argument(items[-1], spread=True)

    def named_arg(self, items):
        name, value = items
        return ast.Argument(value, name=str(name))

    def _with_args(self, call, args):
        "a call node, or a first-class callable when the arguments were (...)"
        if args.tag == 'callable':
            return ast.FirstClassCallable(call(()))
        return call(args.value)

    def index(self, items):
        return ast.Index(items[0], items[1] if len(items) > 1 else None)

    def member_name(self, items):
        return str(items[0])

    def prop(self, items):
        return ast.PropertyFetch(items[0], items[1])

    def nullsafe_prop(self, items):
        return ast.PropertyFetch(items[0], items[1], nullsafe=True)

    def method_call(self, items, nullsafe=False):
        obj, name, args = items
        return self._with_args(
            lambda a: ast.MethodCall(obj, name, a, nullsafe), args
        )

    def nullsafe_method_call(self, items):
        return self.method_call(items, nullsafe=True)

    def class_const_fetch(self, items):
        return ast.ClassConstFetch(items[0], str(items[1]))

    def static_call(self, items):
        cls, name, args = items
        return self._with_args(lambda a: ast.StaticCall(cls, str(name), a), args)

    def static_prop(self, items):
        return ast.StaticPropertyFetch(items[0], str(items[1])[1:])

    def call(self, items):
        callee, args = items
        return self._with_args(lambda a: ast.Call(callee, a), args)

    # Primaries

    def var(self, items):
        return ast.Variable(str(items[0])[1:])

    def var_var(self, items):
        (inner,) = items
        if isinstance(inner, Token):
            return ast.VariableVariable(ast.Variable(str(inner)[1:]))
        return ast.VariableVariable(inner)

    def name(self, items):
        (token,) = items
        text = str(token)
        match text.lower():
            case 'true':
                return ast.Literal(True)
            case 'false':
                return ast.Literal(False)
            case 'null':
                return ast.Literal(None)
        if text.upper() in _MAGIC_CONSTANTS:
            return ast.MagicConst(text.upper(), token.line or 1)
        return ast.ConstFetch(text)

    def class_name(self, items):
        return ast.ConstFetch(str(items[0]))

    def static_name(self, items):
        return ast.ConstFetch('static')

    def int_lit(self, items):
        return ast.Literal(parse_int(str(items[0])))

    def float_lit(self, items):
        return ast.Literal(float(str(items[0]).replace('_', '')))

    def single_string(self, items):
        return ast.Literal(unescape_single(str(items[0])[1:-1]))

    def double_string(self, items):
        return interpolate(str(items[0])[1:-1], self.parse_expr)

    def array_slot(self, items):
        return items[0] if items else None

    def array_items(self, items):
        items = list(items)
        # a trailing comma leaves one empty slot at the end
        if items and items[-1] is None:
            items.pop()
        return tuple(items)

    def item(self, items):
        return ast.ArrayItem(items[0])

    def keyed_item(self, items):
        key, value = items
        return ast.ArrayItem(value, key=key)

    def spread_item(self, items):
        return ast.ArrayItem(items[-1], spread=True)

    def array_lit(self, items):
        return ast.ArrayLiteral(items[0])

    def list_lit(self, items):
        return ast.ArrayLiteral(items[0], is_list_construct=True)

    def new(self, items):
        cls, *args = items
        return ast.New(cls, (args[0].value or ()) if args else ())

    def new_anonymous(self, items):
        tags, members = _split(items)
        decl = ast.ClassDecl(
            None, _flatten_members(members), tags.get('extends'),
            tags.get('implements', ())
        )
        return ast.NewAnonymous(decl, tags.get('args', ()))

    def isset(self, items):
        return ast.Isset(tuple(items))

    def empty(self, items):
        return ast.Empty(items[0])

    def match_conds(self, items):
        return tuple(items)

    def match_default(self, items):
        return None

    def match_arm(self, items):
        conds, body = items
        return ast.MatchArm(conds, body)

    def match(self, items):
        subject, *arms = items
        return ast.Match(subject, tuple(arms))


# -----------
#  Entry points
# -----------

def _transform(tree):
    try:
        return _AstBuilder(parse_expression).transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, ParseError):
            raise e.orig_exc from None
        raise


def _describe(error: UnexpectedInput, text: str) -> str:
    match error:
        case UnexpectedToken(token=Token(type='$END')):
            what = 'end of file'
        case UnexpectedToken():
            what = f"'{error.token}'"
        case UnexpectedCharacters():
            what = f"'{error.char}'"
        case _:
            what = 'end of file'
    line = getattr(error, 'line', None)
    if not isinstance(line, int) or line < 1:
        line = text.count('\n') + 1
    return f'Syntax error, unexpected {what} on line {line}'


def _position(error: UnexpectedInput, text: str) -> int:
    if isinstance(error, UnexpectedToken) and error.token.type == '$END':
        return len(text)
    pos = getattr(error, 'pos_in_stream', None)
    return pos if isinstance(pos, int) else len(text)


def _candidates(text: str):
    """
    The REPL relaxations, in the order they are tried: the text as typed,
    a ; before a closing } that lacks one, and a ; at the end.
    """
    yield text
    stripped = text.rstrip()
    if stripped.endswith('}'):
        head = stripped[:-1].rstrip()
        if head and head[-1] not in ';{}':
            yield head + ';' + stripped[len(head):]
    if stripped and not stripped.endswith(';'):
        yield stripped + ';'


def parse(text: str) -> ast.Fragment:
    source = rewrite_heredocs(strip_tags(text))
    failures = []
    for candidate in _candidates(source):
        try:
            tree = _get_lark().parse(candidate, start='start')
        except UnexpectedInput as e:
            log.debug('parse attempt failed: %r: %s', candidate, e)
            failures.append((e, candidate))
            continue
        return ast.Fragment(_transform(tree), source=text)
    error, candidate = max(failures, key=lambda f: _position(*f))
    raise ParseError(text, _describe(error, candidate))


def parse_expression(text: str) -> ast.Node:
    "parse a single expression, as found inside {$...} in strings"
    try:
        tree = _get_lark().parse(text, start='expr')
    except UnexpectedInput as e:
        raise ParseError(text, _describe(e, text)) from None
    return _transform(tree)


def parse_result(text: str):
    return attempt(lambda: parse(text))
