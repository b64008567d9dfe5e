import pytest

from phrepl import ast
from phrepl.exceptions import ParseError
from phrepl.parser import parse, parse_int, parse_result


def only(text):
    "the single statement parsed from text"
    (stmt,) = parse(text).stmts
    return stmt


def expr(text):
    stmt = only(text)
    assert isinstance(stmt, ast.ExprStmt)
    return stmt.expr


def test_parse_int():
    assert parse_int('42') == 42
    assert parse_int('1_000') == 1000
    assert parse_int('0x1F') == 31
    assert parse_int('0b101') == 5
    assert parse_int('0o17') == 15
    assert parse_int('017') == 15
    assert parse_int('9223372036854775808') == 9223372036854775808.0


def test_literals():
    assert expr('42') == ast.Literal(42)
    assert expr('1.5') == ast.Literal(1.5)
    assert expr("'it\\'s'") == ast.Literal("it's")
    assert expr('TRUE') == ast.Literal(True)
    assert expr('null') == ast.Literal(None)


def test_precedence():
    assert expr('1 + 2 * 3') == ast.BinaryOp(
        '+', ast.Literal(1), ast.BinaryOp('*', ast.Literal(2), ast.Literal(3))
    )
    assert expr('$a ?? $b ?: $c') == ast.Ternary(
        ast.BinaryOp('??', ast.Variable('a'), ast.Variable('b')),
        None,
        ast.Variable('c'),
    )


def test_semicolon_is_optional_at_the_end():
    assert parse('$x = 5').stmts == parse('$x = 5;').stmts
    assert only('$x = 5') == ast.ExprStmt(
        ast.Assign(ast.Variable('x'), ast.Literal(5))
    )


def test_compound_assign_keeps_the_operator():
    node = expr('$x .= "a"')
    assert isinstance(node, ast.CompoundAssign)
    assert node.op == '.'
    assert expr('$x ??= 1').op == '??'


def test_function_decl():
    decl = only('function f($a, int $b = 10, ...$rest) { return $a + $b; }')
    assert isinstance(decl, ast.FunctionDecl)
    assert decl.name == 'f'
    a, b, rest = decl.params
    assert a == ast.Param('a')
    assert b.type == ast.NamedType('int')
    assert b.default == ast.Literal(10)
    assert rest.variadic
    assert decl.body == (ast.Return(
        ast.BinaryOp('+', ast.Variable('a'), ast.Variable('b'))
    ),)


def test_closures():
    closure = expr('function ($x) use ($y) { return $x; }')
    assert isinstance(closure, ast.Closure)
    assert closure.uses == (ast.ClosureUse('y'),)

    arrow = expr('fn($x) => $x * 2')
    assert isinstance(arrow, ast.ArrowFunction)
    assert arrow.expr == ast.BinaryOp('*', ast.Variable('x'), ast.Literal(2))


def test_calls():
    call = expr('f(1, named: 2, ...$xs)')
    assert call.callee == ast.ConstFetch('f')
    one, named, spread = call.args
    assert one == ast.Argument(ast.Literal(1))
    assert named.name == 'named'
    assert spread.spread

    assert expr('strlen(...)') == ast.FirstClassCallable(
        ast.Call(ast.ConstFetch('strlen'), ())
    )
    method = expr('$o?->m()')
    assert isinstance(method, ast.MethodCall) and method.nullsafe
    static = expr('Foo::bar()')
    assert static == ast.StaticCall(ast.ConstFetch('Foo'), 'bar', ())


def test_control_flow():
    stmt = only('if ($a) { 1; } elseif ($b) { 2; } else { 3; }')
    assert isinstance(stmt, ast.If)
    assert len(stmt.elifs) == 1
    assert stmt.else_ is not None

    loop = only('foreach ($xs as $k => $v) { echo $v; }')
    assert isinstance(loop, ast.Foreach)
    assert loop.key == ast.Variable('k')
    assert loop.value == ast.Variable('v')
    assert not loop.by_ref

    assert only('while ($i < 3) { $i++; }').cond == ast.BinaryOp(
        '<', ast.Variable('i'), ast.Literal(3)
    )


def test_class_decl():
    decl = only("""
        final class Point extends Shape implements JsonSerializable {
            const ORIGIN = 0;
            private int $x = 0;
            public function __construct(public readonly int $y) {}
            abstract protected function area(): float;
        }
    """)
    assert isinstance(decl, ast.ClassDecl)
    assert decl.name == 'Point'
    assert decl.parent == 'Shape'
    assert decl.interfaces == ('JsonSerializable',)
    assert decl.modifiers == ('final',)
    kinds = [type(m) for m in decl.members]
    assert kinds == [ast.ClassConstDecl, ast.PropertyDecl, ast.MethodDecl, ast.MethodDecl]
    constructor, area = decl.members[2:]
    assert constructor.params[0].modifiers == ('public', 'readonly')
    assert area.body is None
    assert area.return_type == ast.NamedType('float')


def test_enum_decl():
    decl = only("enum Suit: string { case Hearts = 'H'; case Spades = 'S'; }")
    assert isinstance(decl, ast.EnumDecl)
    assert str(decl.backing_type) == 'string'
    assert [m.name for m in decl.members] == ['Hearts', 'Spades']


def test_namespaces_and_use():
    assert only('namespace App\\Models;') == ast.NamespaceDecl('App\\Models')
    use = only('use Foo\\Bar as Baz, Qux;')
    assert use.items == (ast.UseItem('Foo\\Bar', 'Baz'), ast.UseItem('Qux'))


def test_open_tag_is_stripped():
    assert parse('<?php $x = 1;').stmts == parse('$x = 1;').stmts


def test_heredoc():
    node = expr('<<<EOT\nHello\nEOT')
    assert node == ast.Literal('Hello')


def test_interpolation():
    node = expr('"a $x b"')
    assert isinstance(node, ast.InterpolatedString)
    assert node.parts == ('a ', ast.Variable('x'), ' b')


def test_syntax_error():
    with pytest.raises(ParseError) as exc_info:
        parse('$x = $x +')
    assert 'Syntax error' in exc_info.value.reason
    assert exc_info.value.input == '$x = $x +'


def test_parse_result():
    assert parse_result('1').is_success()
    failure = parse_result('function (')
    assert not failure.is_success()
    assert isinstance(failure.error, ParseError)
