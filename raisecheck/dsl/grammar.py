"""Parser implementation for the effect DSL.

The grammar is small and pragmatic: declarations of error and opaque types,
interfaces with body-less members, functions with an optional ``forwards``
clause and an optional effect clause, and a statement language rich enough to
raise, catch, call and collect closures.

The one non-obvious production is the effect clause::

    effect-clause ::= 'raises' ( '(' type-list ')' )?

A bare identifier after ``raises`` is never read as a type.  Interface members
have no terminator and may start with contextual modifiers (``mut``,
``static``...), so an identifier there belongs to the next member.  Anywhere a
declaration cannot follow, the identifier can only be an unparenthesised type;
that is reported as :class:`AmbiguousModifier` and parsing continues with the
erased ``raises`` form.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional, Sequence, cast

from ..effects.errors import AmbiguousModifier
from ..effects.model import NEVER
from . import ast


class DSLParseError(RuntimeError):
    """Structured parse error that includes source location information."""

    def __init__(self, message: str, line: int, column: int, filename: str = "<dsl>"):
        super().__init__(f"{filename}:{line}:{column}: {message}")
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename


@dataclass(slots=True)
class Token:
    """Single lexical token."""

    kind: str
    value: str
    line: int
    column: int
    end_line: int
    end_column: int


KEYWORDS = {
    "fn",
    "let",
    "if",
    "else",
    "elif",
    "for",
    "while",
    "in",
    "return",
    "true",
    "false",
    "and",
    "or",
    "not",
    "raise",
    "raises",
    "try",
    "catch",
    "error",
    "type",
    "interface",
}

# Contextual words.  They tokenize as IDENT and are recognised by position only.
MODIFIERS = {"mut", "static", "override"}
FORWARDS = "forwards"
COLLECTION_METHODS = {"append": "list", "insert": "set"}

BUILTINS = {"len", "print", "range", "str"}

OPERATORS = {
    "==",
    "!=",
    "<=",
    ">=",
    "=",
    "<",
    ">",
    "+",
    "-",
    "*",
    "/",
    "%",
}


class Tokenizer:
    """Simple hand-written tokenizer."""

    def __init__(self, source: str, filename: str = "<dsl>") -> None:
        self.source = source
        self.filename = filename
        self.length = len(source)
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while not self._eof:
            ch = self._peek()
            if ch.isspace():
                self._consume_whitespace()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            if ch.isalpha() or ch == "_":
                tokens.append(self._consume_identifier())
                continue
            if ch.isdigit():
                tokens.append(self._consume_number())
                continue
            if ch == '"':
                tokens.append(self._consume_string())
                continue
            tokens.append(self._consume_punctuation())
        tokens.append(Token("EOF", "", self.line, self.column, self.line, self.column))
        return tokens

    @property
    def _eof(self) -> bool:
        return self.index >= self.length

    def _peek(self, offset: int = 0) -> str:
        if self.index + offset >= self.length:
            return "\0"
        return self.source[self.index + offset]

    def _advance(self, count: int = 1) -> str:
        value = ""
        for _ in range(count):
            if self._eof:
                break
            ch = self.source[self.index]
            value += ch
            self.index += 1
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return value

    def _consume_whitespace(self) -> None:
        while not self._eof and self._peek().isspace():
            self._advance()

    def _consume_comment(self) -> None:
        while not self._eof and self._peek() != "\n":
            self._advance()

    def _consume_identifier(self) -> Token:
        start_line, start_column = self.line, self.column
        value = self._advance()
        while self._peek().isalnum() or self._peek() == "_":
            value += self._advance()
        kind = value if value in KEYWORDS else "IDENT"
        return Token(kind, value, start_line, start_column, self.line, self.column)

    def _consume_number(self) -> Token:
        start_line, start_column = self.line, self.column
        value = self._advance()
        kind = "INT"
        while self._peek().isdigit():
            value += self._advance()
        if self._peek() == "." and self._peek(1).isdigit():
            kind = "FLOAT"
            value += self._advance()
            while self._peek().isdigit():
                value += self._advance()
        return Token(kind, value, start_line, start_column, self.line, self.column)

    def _consume_string(self) -> Token:
        start_line, start_column = self.line, self.column
        self._advance()  # opening quote
        value_chars: list[str] = []
        while not self._eof:
            ch = self._advance()
            if ch == '"':
                break
            if ch == "\\":
                escaped = self._advance()
                escape_map = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}
                value_chars.append(escape_map.get(escaped, escaped))
            else:
                value_chars.append(ch)
        else:
            raise DSLParseError(
                "Unterminated string literal", start_line, start_column, self.filename
            )
        literal = "".join(value_chars)
        return Token("STRING", literal, start_line, start_column, self.line, self.column)

    def _consume_punctuation(self) -> Token:
        start_line, start_column = self.line, self.column
        ch = self._advance()
        two_char = ch + self._peek()
        if ch == "-" and self._peek() == ">":
            self._advance()
            return Token("ARROW", "->", start_line, start_column, self.line, self.column)
        if two_char in {"==", "!=", "<=", ">=", "&&", "||"}:
            self._advance()
            kind = {
                "&&": "AND_OP",
                "||": "OR_OP",
            }.get(two_char, two_char)
            return Token(kind, two_char, start_line, start_column, self.line, self.column)
        punct_map = {
            "(": "LPAREN",
            ")": "RPAREN",
            "{": "LBRACE",
            "}": "RBRACE",
            "[": "LBRACKET",
            "]": "RBRACKET",
            ":": "COLON",
            ",": "COMMA",
            ";": "SEMICOLON",
            ".": "DOT",
            "|": "PIPE",
        }
        if ch in punct_map:
            kind = punct_map[ch]
        elif ch in OPERATORS:
            kind = ch
        else:
            raise DSLParseError(
                f"Unexpected character '{ch}'", start_line, start_column, self.filename
            )
        return Token(kind, ch, start_line, start_column, self.line, self.column)


# ---------------------------------------------------------------------------
# Effect clause disambiguation


class EffectParse(NamedTuple):
    """Outcome of :func:`disambiguate`.

    ``clause`` is ``None`` when no ``raises`` token was present.  ``error`` is
    set when a bare identifier had to be skipped; ``clause`` then holds the
    erased form so callers can keep going.
    """

    clause: Optional[ast.EffectClause]
    index: int
    error: Optional[AmbiguousModifier] = None


def disambiguate(
    tokens: Sequence[Token],
    index: int,
    *,
    declaration_may_follow: bool,
    filename: str = "<dsl>",
) -> EffectParse:
    """Parse the effect clause starting at ``tokens[index]``, if any."""

    start = tokens[index]
    if start.kind != "raises":
        return EffectParse(None, index)
    index += 1
    following = tokens[index]
    if following.kind == "LPAREN":
        index += 1
        names: list[str] = []
        while True:
            name_token = tokens[index]
            if name_token.kind != "IDENT":
                raise DSLParseError(
                    f"Expected error type in raises clause, found {name_token.kind}",
                    name_token.line,
                    name_token.column,
                    filename,
                )
            names.append(name_token.value)
            index += 1
            if tokens[index].kind == "COMMA":
                index += 1
                continue
            break
        closing = tokens[index]
        if closing.kind != "RPAREN":
            raise DSLParseError(
                f"Expected RPAREN, found {closing.kind}", closing.line, closing.column, filename
            )
        index += 1
        clause = ast.EffectClause(
            types=names,
            span=ast.Span(start.line, start.column, closing.end_line, closing.end_column),
        )
        return EffectParse(clause, index)

    clause = ast.EffectClause(
        types=[], span=ast.Span(start.line, start.column, start.end_line, start.end_column)
    )
    if following.kind == "IDENT" and not declaration_may_follow:
        error = AmbiguousModifier(following.value, following.line, following.column)
        return EffectParse(clause, index + 1, error)
    return EffectParse(clause, index)


# ---------------------------------------------------------------------------
# Parser


class Scope:
    """Lexical scope tracking declared identifiers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.bindings: set[str] = set()

    def declare(self, name: str) -> None:
        self.bindings.add(name)

    def contains(self, name: str) -> bool:
        return name in self.bindings


class Parser:
    """Recursive-descent parser paired with lexical scope validation."""

    def __init__(self, tokens: Sequence[Token], filename: str = "<dsl>") -> None:
        self.tokens = tokens
        self.index = 0
        self.filename = filename
        self.scopes: list[Scope] = [Scope("module")]
        self.globals: set[str] = {
            tokens[i + 1].value
            for i in range(len(tokens) - 1)
            if tokens[i].kind in {"fn", "error", "type"} and tokens[i + 1].kind == "IDENT"
        }
        self.diagnostics: list[AmbiguousModifier] = []

    # ------------------------------------------------------------------
    # Scope helpers

    def _push_scope(self, name: str) -> None:
        self.scopes.append(Scope(name))

    def _pop_scope(self) -> None:
        self.scopes.pop()

    def _declare(self, name: str, token: Token) -> None:
        if self.scopes[-1].contains(name):
            raise DSLParseError(
                f"Identifier '{name}' already declared in this scope",
                token.line,
                token.column,
                self.filename,
            )
        self.scopes[-1].declare(name)

    def _ensure_defined(self, name: str, token: Token) -> None:
        if name in BUILTINS or name in self.globals:
            return
        for scope in reversed(self.scopes):
            if scope.contains(name):
                return
        raise DSLParseError(
            f"Use of undefined identifier '{name}'", token.line, token.column, self.filename
        )

    # ------------------------------------------------------------------
    # Token helpers

    def _peek(self, offset: int = 0) -> Token:
        target = self.index + offset
        if target < 0:
            target = 0
        if target >= len(self.tokens):
            target = len(self.tokens) - 1
        return self.tokens[target]

    def _advance(self) -> Token:
        token = self._peek()
        if token.kind != "EOF":
            self.index += 1
        return token

    def _match(self, *kinds: str) -> Optional[Token]:
        token = self._peek()
        if token.kind in kinds:
            self.index += 1
            return token
        return None

    def _expect(self, *kinds: str) -> Token:
        token = self._peek()
        if token.kind not in kinds:
            expected = " or ".join(kinds)
            raise DSLParseError(
                f"Expected {expected}, found {token.kind}", token.line, token.column, self.filename
            )
        self.index += 1
        return token

    def _check(self, *kinds: str) -> bool:
        return self._peek().kind in kinds

    def _check_word(self, word: str, offset: int = 0) -> bool:
        token = self._peek(offset)
        return token.kind == "IDENT" and token.value == word

    def _span_from(self, start: Token) -> ast.Span:
        end = self._peek(-1)
        return ast.Span(start.line, start.column, end.end_line, end.end_column)

    def _parse_effect_clause(self, *, declaration_may_follow: bool) -> Optional[ast.EffectClause]:
        result = disambiguate(
            self.tokens,
            self.index,
            declaration_may_follow=declaration_may_follow,
            filename=self.filename,
        )
        if result.error is not None:
            self.diagnostics.append(result.error)
        self.index = result.index
        return result.clause

    # ------------------------------------------------------------------
    # Declarations

    def parse_module(self) -> ast.Module:
        module = ast.Module(functions=[])
        seen: set[str] = set()
        while not self._check("EOF"):
            start = self._peek()
            if self._match("error"):
                name_token = self._expect("IDENT")
                self._expect("SEMICOLON")
                module.errors.append(
                    ast.ErrorDecl(name=name_token.value, span=self._span_from(start))
                )
                continue
            if self._match("type"):
                name_token = self._expect("IDENT")
                self._expect("SEMICOLON")
                module.types.append(ast.TypeDecl(name=name_token.value, span=self._span_from(start)))
                continue
            if self._check("interface"):
                module.interfaces.append(self._parse_interface())
                continue
            function = self._parse_function()
            if function.name in seen:
                raise DSLParseError(
                    f"Duplicate function '{function.name}'", start.line, start.column, self.filename
                )
            seen.add(function.name)
            module.functions.append(function)
        return module

    def _parse_function(self) -> ast.FunctionDecl:
        fn_token = self._expect("fn")
        name_token = self._expect("IDENT")
        parameters = self._parse_parameters()
        forwards = self._parse_forwards(parameters)
        effect = self._parse_effect_clause(declaration_may_follow=False)
        if forwards and effect is not None:
            self._validate_forwarding_target(effect, name_token)
        return_type: Optional[ast.TypeExpr] = None
        if self._match("ARROW"):
            return_type = self._parse_type()
        signature_span = self._span_from(fn_token)
        self._push_scope(f"fn:{name_token.value}")
        for param in parameters:
            self._declare(param.name, fn_token)
        body = self._parse_block()
        self._pop_scope()
        return ast.FunctionDecl(
            name=name_token.value,
            parameters=parameters,
            return_type=return_type,
            body=body,
            effect=effect,
            forwards=forwards,
            span=signature_span,
        )

    def _parse_parameters(self) -> list[ast.Parameter]:
        self._expect("LPAREN")
        parameters: list[ast.Parameter] = []
        if not self._check("RPAREN"):
            parameters.append(self._parse_parameter())
            while self._match("COMMA"):
                parameters.append(self._parse_parameter())
        self._expect("RPAREN")
        return parameters

    def _parse_parameter(self) -> ast.Parameter:
        name_token = self._expect("IDENT")
        type_annotation: Optional[ast.TypeExpr] = None
        if self._match("COLON"):
            type_annotation = self._parse_type()
        return ast.Parameter(name=name_token.value, type_annotation=type_annotation)

    def _parse_forwards(self, parameters: Sequence[ast.Parameter]) -> list[str]:
        if not (self._check_word(FORWARDS) and self._peek(1).kind == "LPAREN"):
            return []
        self._advance()
        self._expect("LPAREN")
        known = {param.name for param in parameters}
        names: list[str] = []
        while True:
            token = self._expect("IDENT")
            if token.value not in known:
                raise DSLParseError(
                    f"'{token.value}' in forwards clause is not a parameter",
                    token.line,
                    token.column,
                    self.filename,
                )
            names.append(token.value)
            if not self._match("COMMA"):
                break
        self._expect("RPAREN")
        return names

    def _validate_forwarding_target(self, effect: ast.EffectClause, name_token: Token) -> None:
        if len(effect.types) != 1 or effect.types[0] == NEVER:
            raise DSLParseError(
                f"Forwarding function '{name_token.value}' needs a single typed target: raises(T)",
                name_token.line,
                name_token.column,
                self.filename,
            )

    def _parse_interface(self) -> ast.InterfaceDecl:
        start = self._expect("interface")
        name_token = self._expect("IDENT")
        self._expect("LBRACE")
        members: list[ast.InterfaceMember] = []
        previous_bare = False
        while not self._check("RBRACE"):
            member_start = self._peek()
            modifiers: list[str] = []
            while self._check("IDENT"):
                token = self._advance()
                if token.value in MODIFIERS:
                    modifiers.append(token.value)
                elif previous_bare and not modifiers:
                    # Only reachable when the previous member ended in a bare
                    # ``raises``: the word reads as an unparenthesised type.
                    self.diagnostics.append(
                        AmbiguousModifier(token.value, token.line, token.column)
                    )
                else:
                    raise DSLParseError(
                        f"Unknown modifier '{token.value}'", token.line, token.column, self.filename
                    )
            self._expect("fn")
            member_name = self._expect("IDENT")
            parameters = self._parse_parameters()
            effect = self._parse_effect_clause(declaration_may_follow=True)
            return_type: Optional[ast.TypeExpr] = None
            if self._match("ARROW"):
                return_type = self._parse_type()
            self._match("SEMICOLON")
            previous_bare = effect is not None and not effect.is_typed and return_type is None
            members.append(
                ast.InterfaceMember(
                    name=member_name.value,
                    parameters=parameters,
                    effect=effect,
                    return_type=return_type,
                    modifiers=modifiers,
                    span=self._span_from(member_start),
                )
            )
        self._expect("RBRACE")
        return ast.InterfaceDecl(name=name_token.value, members=members, span=self._span_from(start))

    def _parse_type(self) -> ast.TypeExpr:
        start = self._peek()
        if self._match("fn"):
            self._expect("LPAREN")
            parameters: list[ast.TypeExpr] = []
            if not self._check("RPAREN"):
                parameters.append(self._parse_type())
                while self._match("COMMA"):
                    parameters.append(self._parse_type())
            self._expect("RPAREN")
            effect = self._parse_effect_clause(declaration_may_follow=False)
            result: Optional[ast.TypeExpr] = None
            if self._match("ARROW"):
                result = self._parse_type()
            return ast.FunctionTypeRef(
                parameters=parameters, effect=effect, result=result, span=self._span_from(start)
            )
        name_token = self._expect("IDENT")
        arguments: list[ast.TypeExpr] = []
        if self._match("<"):
            arguments.append(self._parse_type())
            while self._match("COMMA"):
                arguments.append(self._parse_type())
            self._expect(">")
        return ast.TypeRef(name=name_token.value, arguments=arguments, span=self._span_from(start))

    # ------------------------------------------------------------------
    # Statements

    def _parse_block(self) -> ast.Block:
        start = self._expect("LBRACE")
        statements: list[ast.Statement] = []
        self._push_scope("block")
        while not self._check("RBRACE"):
            statements.append(self._parse_statement())
        self._pop_scope()
        self._expect("RBRACE")
        return ast.Block(statements=statements, span=self._span_from(start))

    def _parse_statement(self) -> ast.Statement:
        start = self._peek()
        if self._match("let"):
            mutable = False
            if self._check_word("mut") and self._peek(1).kind == "IDENT":
                self._advance()
                mutable = True
            name_token = self._expect("IDENT")
            type_annotation: Optional[ast.TypeExpr] = None
            if self._match("COLON"):
                type_annotation = self._parse_type()
            self._expect("=")
            value = self._parse_expression()
            self._expect("SEMICOLON")
            self._declare(name_token.value, name_token)
            return ast.Let(
                name=name_token.value,
                value=value,
                type_annotation=type_annotation,
                mutable=mutable,
                span=self._span_from(start),
            )
        if self._match("return"):
            value: Optional[ast.Expression] = None
            if not self._check("SEMICOLON"):
                value = self._parse_expression()
            self._expect("SEMICOLON")
            return ast.Return(value=value, span=self._span_from(start))
        if self._match("raise"):
            raised = self._parse_expression()
            self._expect("SEMICOLON")
            return ast.Raise(value=raised, span=self._span_from(start))
        if self._match("try"):
            return self._parse_try(start)
        if self._match("if"):
            return self._parse_if()
        if self._match("for"):
            return self._parse_for()
        if self._match("while"):
            return self._parse_while()
        if self._check("IDENT") and self._peek(1).kind == "DOT":
            return self._parse_append()

        # Expression or assignment statement
        expr = self._parse_expression()
        target_name = ast.identifier_name(expr)
        if target_name is not None and self._match("="):
            value = self._parse_expression()
            self._expect("SEMICOLON")
            return ast.Assign(target=target_name, value=value, span=self._span_from(start))
        self._expect("SEMICOLON")
        return expr

    def _parse_try(self, start: Token) -> ast.Try:
        body = self._parse_block()
        self._expect("catch")
        binding: Optional[str] = None
        self._push_scope("catch")
        if self._check("IDENT"):
            binding_token = self._advance()
            binding = binding_token.value
            self._declare(binding, binding_token)
        handler = self._parse_block()
        self._pop_scope()
        return ast.Try(body=body, handler=handler, binding=binding, span=self._span_from(start))

    def _parse_append(self) -> ast.Append:
        target_token = self._expect("IDENT")
        self._ensure_defined(target_token.value, target_token)
        self._expect("DOT")
        method_token = self._expect("IDENT")
        if method_token.value not in COLLECTION_METHODS:
            raise DSLParseError(
                f"Unknown collection method '{method_token.value}'",
                method_token.line,
                method_token.column,
                self.filename,
            )
        self._expect("LPAREN")
        value = self._parse_expression()
        self._expect("RPAREN")
        self._expect("SEMICOLON")
        return ast.Append(
            target=target_token.value,
            method=method_token.value,
            value=value,
            span=self._span_from(target_token),
        )

    def _parse_if(self) -> ast.Conditional:
        test = self._parse_expression()
        then_block = self._parse_block()
        branches: list[tuple[Optional[ast.Expression], ast.Block]] = [(test, then_block)]
        while self._match("elif"):
            condition = self._parse_expression()
            block = self._parse_block()
            branches.append((condition, block))
        if self._match("else"):
            else_block = self._parse_block()
            branches.append((None, else_block))
        return ast.Conditional(test=test, branches=branches)

    def _parse_for(self) -> ast.Loop:
        target_token = self._expect("IDENT")
        self._expect("in")
        iterable = self._parse_expression()
        self._push_scope("for")
        self._declare(target_token.value, target_token)
        body = self._parse_block()
        self._pop_scope()
        return ast.Loop(
            kind="for", target=target_token.value, iterable=iterable, condition=None, body=body
        )

    def _parse_while(self) -> ast.Loop:
        condition = self._parse_expression()
        body = self._parse_block()
        return ast.Loop(kind="while", target=None, iterable=None, condition=condition, body=body)

    # ------------------------------------------------------------------
    # Expressions

    def _parse_expression(self) -> ast.Expression:
        return self._parse_binary_expression(0)

    def _parse_binary_expression(self, min_precedence: int) -> ast.Expression:
        expr = self._parse_unary()
        while True:
            operator_token = self._peek()
            operator = self._binary_operator(operator_token)
            if operator is None:
                break
            precedence = _PRECEDENCE[operator]
            if precedence < min_precedence:
                break
            self._advance()
            rhs = self._parse_binary_expression(precedence + 1)
            expr = ast.BinaryOp(operator=operator, left=expr, right=rhs)
        return expr

    def _binary_operator(self, token: Token) -> Optional[str]:
        kind = token.kind
        if kind in {"AND_OP", "and"}:
            return "and"
        if kind in {"OR_OP", "or"}:
            return "or"
        if kind in _PRECEDENCE:
            return kind
        return None

    def _parse_unary(self) -> ast.Expression:
        token = self._peek()
        if token.kind in {"-", "not"}:
            self._advance()
            operand = self._parse_unary()
            return ast.UnaryOp(operator=token.kind, operand=operand)
        return self._parse_call()

    def _parse_call(self) -> ast.Expression:
        start = self._peek()
        expr = self._parse_primary()
        while self._match("LPAREN"):
            arguments: list[ast.Expression] = []
            if not self._check("RPAREN"):
                arguments.append(self._parse_expression())
                while self._match("COMMA"):
                    arguments.append(self._parse_expression())
            self._expect("RPAREN")
            name = ast.identifier_name(expr)
            if name is None:
                raise DSLParseError(
                    "Calls must target identifiers",
                    self._peek(-1).line,
                    self._peek(-1).column,
                    self.filename,
                )
            expr = ast.Call(function=name, arguments=arguments, span=self._span_from(start))
        return expr

    def _parse_primary(self) -> ast.Expression:
        token = self._peek()
        if token.kind == "LPAREN":
            self._advance()
            expr = self._parse_expression()
            self._expect("RPAREN")
            return expr
        if token.kind == "LBRACKET":
            return self._parse_collection("list", token)
        if token.kind == "IDENT" and token.value == "set" and self._peek(1).kind == "LBRACKET":
            self._advance()
            return self._parse_collection("set", token)
        if token.kind in {"PIPE", "OR_OP"}:
            return self._parse_closure()
        if token.kind == "IDENT":
            self._advance()
            self._ensure_defined(token.value, token)
            return ast.Literal(
                literal_type="identifier", value=token.value, span=self._span_from(token)
            )
        if token.kind in {"true", "false"}:
            self._advance()
            return ast.Literal(
                literal_type="bool", value=token.kind == "true", span=self._span_from(token)
            )
        if token.kind == "INT":
            self._advance()
            return ast.Literal(literal_type="int", value=int(token.value), span=self._span_from(token))
        if token.kind == "FLOAT":
            self._advance()
            return ast.Literal(
                literal_type="float", value=float(token.value), span=self._span_from(token)
            )
        if token.kind == "STRING":
            self._advance()
            return ast.Literal(literal_type="string", value=token.value, span=self._span_from(token))
        raise DSLParseError(
            f"Unexpected token {token.kind}", token.line, token.column, self.filename
        )

    def _parse_collection(self, kind: str, start: Token) -> ast.CollectionLiteral:
        self._expect("LBRACKET")
        elements: list[ast.Expression] = []
        if not self._check("RBRACKET"):
            elements.append(self._parse_expression())
            while self._match("COMMA"):
                elements.append(self._parse_expression())
        self._expect("RBRACKET")
        return ast.CollectionLiteral(kind=kind, elements=elements, span=self._span_from(start))

    def _parse_closure(self) -> ast.Closure:
        start = self._peek()
        parameters: list[ast.Parameter] = []
        if not self._match("OR_OP"):
            self._expect("PIPE")
            if not self._check("PIPE"):
                parameters.append(self._parse_parameter())
                while self._match("COMMA"):
                    parameters.append(self._parse_parameter())
            self._expect("PIPE")
        effect = self._parse_effect_clause(declaration_may_follow=False)
        self._push_scope("closure")
        for param in parameters:
            self._declare(param.name, start)
        body: ast.Node
        if effect is not None or self._check("LBRACE"):
            body = self._parse_block()
        else:
            body = self._parse_expression()
        self._pop_scope()
        return ast.Closure(
            parameters=parameters, body=body, effect=effect, span=self._span_from(start)
        )


_PRECEDENCE: dict[str, int] = {
    "or": 1,
    "and": 2,
    "==": 3,
    "!=": 3,
    "<": 4,
    "<=": 4,
    ">": 4,
    ">=": 4,
    "+": 5,
    "-": 5,
    "*": 6,
    "/": 6,
    "%": 6,
}


def parse_module(source: str, *, filename: str = "<dsl>") -> ast.Module:
    """Parse DSL ``source`` text into an :class:`ast.Module` instance.

    Recoverable clause errors are kept on ``module.metadata["parse_diagnostics"]``.
    """

    tokens = Tokenizer(source, filename=filename).tokenize()
    parser = Parser(tokens, filename=filename)
    module = parser.parse_module()
    module.metadata["parse_diagnostics"] = list(parser.diagnostics)
    return module


def parse_statements(source: str, *, filename: str = "<dsl>") -> Iterable[ast.Statement]:
    """Parse a brace-wrapped block and return its statements.

    Useful for unit tests where we only care about statement parsing.
    """

    module = parse_module(f"fn __temp__() {{{source}}}", filename=filename)
    if not module.functions:
        return []
    return cast(list[ast.Statement], module.functions[0].body.statements)


__all__ = [
    "DSLParseError",
    "EffectParse",
    "Parser",
    "Token",
    "Tokenizer",
    "disambiguate",
    "parse_module",
    "parse_statements",
]
