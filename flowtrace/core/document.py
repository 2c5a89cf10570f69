"""Document-model adapter interface consumed by the recorder and locator layers."""

from __future__ import annotations

from typing import Callable, Iterable, Protocol, runtime_checkable

from flowtrace.core.types import GeometrySnapshot, MutationRecord, NodeRef, Viewport

MutationListener = Callable[[list[MutationRecord]], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class DocumentAdapter(Protocol):
    """
    Read access to a live document plus a mutation feed.

    Node handles are ``NodeRef`` values; adapters never hand out their own
    element objects. Expressions are CSS unless they start with ``//`` or
    ``(//``, in which case they are XPath. ``measure`` raises
    ``NodeDetachedError`` for nodes no longer in the document, and the query
    methods raise ``InvalidExpressionError`` for unparsable expressions.
    """

    # structure
    def root(self) -> NodeRef: ...
    def body(self) -> NodeRef: ...
    def is_attached(self, node: NodeRef) -> bool: ...
    def tag_name(self, node: NodeRef) -> str: ...
    def get_attribute(self, node: NodeRef, name: str) -> str | None: ...
    def parent(self, node: NodeRef) -> NodeRef | None: ...
    def children(self, node: NodeRef) -> list[NodeRef]: ...
    def direct_text(self, node: NodeRef) -> str: ...
    def inner_text(self, node: NodeRef) -> str: ...

    # geometry and style
    def measure(self, node: NodeRef) -> GeometrySnapshot: ...
    def computed_style(self, node: NodeRef) -> dict[str, str]: ...
    def viewport(self) -> Viewport: ...
    def location(self) -> str: ...

    # queries
    def query_unique_count(self, expression: str) -> int: ...
    def evaluate_structural_query(self, expression: str) -> list[NodeRef]: ...
    def query_within(self, node: NodeRef, expression: str) -> list[NodeRef]: ...

    # observation
    def observe_mutations(
        self,
        listener: MutationListener,
        attribute_filter: Iterable[str] | None = None,
    ) -> Unsubscribe: ...


def is_xpath(expression: str) -> bool:
    return expression.startswith("//") or expression.startswith("(//")
