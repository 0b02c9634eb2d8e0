"""Abstract syntax tree for the effect DSL.

The node set is deliberately small: enough surface to write functions with
``raises`` clauses, closures, collections of closures, ``try``/``catch`` and
forwarding functions.  Nodes are plain dataclasses; analysis passes attach
their results through ``metadata`` rather than mutating structural fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Iterator, Optional, Sequence, Union

# ---------------------------------------------------------------------------
# Shared utilities


@dataclass(slots=True)
class Span:
    """Represents the start/end position of a token or node in the source file."""

    start_line: int
    start_column: int
    end_line: int
    end_column: int


@dataclass(slots=True, kw_only=True)
class Node:
    """Base class for all AST nodes.

    ``span`` is optional because tests and other passes occasionally
    synthesise nodes.  ``metadata`` carries pass results (``effect``,
    ``collection_binding``) without touching the structural fields.
    """

    span: Optional[Span] = None
    metadata: dict[str, object] = field(default_factory=dict)

    def children(self) -> Iterator[Node]:
        """Yield child nodes in declaration order."""

        for spec in fields(self):
            if spec.name in {"span", "metadata"}:
                continue
            value = getattr(self, spec.name)
            yield from _iter_possible_children(value)

    def walk(self) -> Iterator[Node]:
        """Depth-first traversal starting at this node."""

        yield self
        for child in self.children():
            yield from child.walk()


# ---------------------------------------------------------------------------
# Types and effect clauses


@dataclass(slots=True)
class EffectClause(Node):
    """``raises`` or ``raises(T, ...)`` as written in the source."""

    types: list[str] = field(default_factory=list)

    @property
    def is_typed(self) -> bool:
        return bool(self.types)


@dataclass(slots=True)
class TypeRef(Node):
    """Named type, optionally with generic arguments (``list<int>``)."""

    name: str
    arguments: list["TypeExpr"] = field(default_factory=list)


@dataclass(slots=True)
class FunctionTypeRef(Node):
    """Function type ``fn(A, B) raises(E) -> R``."""

    parameters: list["TypeExpr"]
    effect: Optional[EffectClause] = None
    result: Optional["TypeExpr"] = None


TypeExpr = Union[TypeRef, FunctionTypeRef]


@dataclass(slots=True)
class Parameter:
    """Function or closure parameter definition."""

    name: str
    type_annotation: Optional[TypeExpr] = None


# ---------------------------------------------------------------------------
# Declarations


@dataclass(slots=True)
class Module(Node):
    """Top-level compilation unit."""

    functions: list["FunctionDecl"]
    errors: list["ErrorDecl"] = field(default_factory=list)
    types: list["TypeDecl"] = field(default_factory=list)
    interfaces: list["InterfaceDecl"] = field(default_factory=list)


@dataclass(slots=True)
class ErrorDecl(Node):
    """``error Name;``: a type that satisfies the error capability."""

    name: str


@dataclass(slots=True)
class TypeDecl(Node):
    """``type Name;``: an opaque type that is not an error."""

    name: str


@dataclass(slots=True)
class InterfaceMember(Node):
    """Body-less function requirement inside an ``interface`` block."""

    name: str
    parameters: list[Parameter]
    effect: Optional[EffectClause] = None
    return_type: Optional[TypeExpr] = None
    modifiers: list[str] = field(default_factory=list)


@dataclass(slots=True)
class InterfaceDecl(Node):
    name: str
    members: list[InterfaceMember]


@dataclass(slots=True)
class Block(Node):
    """A lexical block consisting of an ordered list of statements."""

    statements: list["Statement"]


Expression = Node
Statement = Node


@dataclass(slots=True)
class FunctionDecl(Node):
    """Function declaration.

    ``forwards`` lists the parameters whose raising behaviour the function
    forwards; when it is non-empty the function's own effect is resolved from
    those parameters instead of being read off ``effect`` directly.
    """

    name: str
    parameters: list[Parameter]
    return_type: Optional[TypeExpr]
    body: Block
    effect: Optional[EffectClause] = None
    forwards: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Statements


@dataclass(slots=True)
class Let(Node):
    name: str
    value: Expression
    type_annotation: Optional[TypeExpr] = None
    mutable: bool = False


@dataclass(slots=True)
class Assign(Node):
    target: str
    value: Expression


@dataclass(slots=True)
class Return(Node):
    value: Optional[Expression] = None


@dataclass(slots=True)
class Raise(Node):
    """``raise <expr>;``"""

    value: Expression


@dataclass(slots=True)
class Try(Node):
    """``try { ... } catch [name] { ... }``; the handler catches everything."""

    body: Block
    handler: Block
    binding: Optional[str] = None


@dataclass(slots=True)
class Append(Node):
    """``target.append(value)`` / ``target.insert(value)`` on a collection."""

    target: str
    method: str
    value: Expression


@dataclass(slots=True)
class Loop(Node):
    """Represents either a ``for`` or ``while`` loop."""

    kind: str  # "for" | "while"
    target: Optional[str]
    iterable: Optional[Expression]
    condition: Optional[Expression]
    body: Block


@dataclass(slots=True)
class Conditional(Node):
    """If/elif/else chain; the ``else`` branch has no test."""

    test: Expression
    branches: list[tuple[Optional[Expression], Block]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Expressions


@dataclass(slots=True)
class Call(Node):
    """Invocation of a named function, parameter, local or error constructor."""

    function: str
    arguments: list[Expression]


@dataclass(slots=True)
class Closure(Node):
    """Anonymous function literal ``|x| expr`` or ``|x| raises(E) { ... }``."""

    parameters: list[Parameter]
    body: Union[Block, Expression]
    effect: Optional[EffectClause] = None


@dataclass(slots=True)
class CollectionLiteral(Node):
    """List ``[a, b]`` or set ``set[a, b]`` literal."""

    kind: str  # "list" | "set"
    elements: list[Expression]


@dataclass(slots=True)
class Literal(Node):
    """Primitive literal value.

    Identifiers are literals with ``literal_type == "identifier"``; ``value``
    then holds the name.
    """

    literal_type: str
    value: object


@dataclass(slots=True)
class BinaryOp(Node):
    operator: str
    left: Expression
    right: Expression


@dataclass(slots=True)
class UnaryOp(Node):
    operator: str
    operand: Expression


# ---------------------------------------------------------------------------
# Helper functions


def identifier_name(node: Optional[Node]) -> Optional[str]:
    """Return the name when ``node`` is an identifier literal."""

    if isinstance(node, Literal) and node.literal_type == "identifier":
        return str(node.value)
    return None


def _iter_possible_children(value: object) -> Iterator[Node]:
    if isinstance(value, Node):
        yield value
        return
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for item in value:
            if isinstance(item, Node):
                yield item
            elif isinstance(item, Sequence) and not isinstance(item, (str, bytes, bytearray)):
                yield from _iter_possible_children(item)
