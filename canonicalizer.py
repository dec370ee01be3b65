"""
Query Merger, Canonicalizer and Hasher

Turns one extracted operation into the exact text that gets persisted:

1. MERGE: the operation text plus the text of every fragment it reaches through
   its dependency lists, each fragment appended once.
2. PARSE: graphql-core parses the merged document (syntax errors propagate).
3. __typename: optionally added to every nested selection set, like Apollo's
   addTypenameToDocument, so normalized client caches can identify objects.
4. SORT: directives, variable definitions, arguments and selections are put in a
   deterministic order. Mutation selection sets keep their source order, because
   the order of mutation fields is the order in which they execute.
5. PRINT: graphql-core prints each definition and whitespace runs collapse to a
   single space.

Two documents that differ only in formatting or in the order of fields and
arguments therefore produce the same text and the same SHA-256 digest.
"""

import hashlib
import re
from copy import copy
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from graphql import (
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    NameNode,
    Node,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    Visitor,
    parse,
    print_ast,
    visit,
)

from extractor import OperationRecord
from indexer import UnresolvedFragmentError

WHITESPACE_PATTERN = re.compile(r"\s+")

TYPENAME = "__typename"


def hash_query(text: str) -> str:
    """SHA-256 hex digest of a canonical query; the persisted query id."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ----------------------------
# Merge an operation with every fragment it transitively depends on
#
# Walks the dependency lists depth-first, visiting each name once. A fragment
# text already contained in the accumulated document is not appended again
# (plain substring check, the same fragment text is never duplicated).
# ----------------------------
def merge_query(record: OperationRecord, registry: Mapping[str, OperationRecord]) -> str:
    merged = record.source_text
    visited: Set[str] = set()
    stack: List[str] = sorted(record.depends_on, reverse=True)
    while stack:
        name = stack.pop()
        if name in visited:
            continue
        visited.add(name)
        fragment = registry.get(name)
        if fragment is None:
            raise UnresolvedFragmentError(
                name, record.file_id, f"no graphql(...) definition named {name} was indexed"
            )
        if fragment.source_text not in merged:
            merged = merged + "\n" + fragment.source_text
        stack.extend(sorted(fragment.depends_on - visited, reverse=True))
    return merged


class AddTypenameVisitor(Visitor):
    """Select __typename in every selection set except the operation's root set."""

    def enter_selection_set(self, node: SelectionSetNode, _key, parent, _path, _ancestors):
        if isinstance(parent, OperationDefinitionNode):
            return None
        if isinstance(parent, FieldNode):
            if parent.name.value.startswith("__"):
                return None
            if any(directive.name.value == "export" for directive in parent.directives or ()):
                return None
        for selection in node.selections or ():
            if isinstance(selection, FieldNode) and selection.name.value.startswith("__"):
                return None
        typename = FieldNode(name=NameNode(value=TYPENAME), arguments=(), directives=())
        return _replace(node, selections=tuple(node.selections or ()) + (typename,))


def add_typename_to_document(document: DocumentNode) -> DocumentNode:
    return visit(document, AddTypenameVisitor())


def _replace(node: Node, **changes: Any) -> Node:
    new_node = copy(node)
    for key, value in changes.items():
        setattr(new_node, key, value)
    return new_node


def _by_name(nodes: Optional[Sequence[Any]]) -> tuple:
    return tuple(sorted(nodes or (), key=lambda n: n.name.value))


def _sort_directives(directives: Optional[Sequence[Any]]) -> tuple:
    return tuple(
        _replace(directive, arguments=_by_name(directive.arguments))
        for directive in _by_name(directives)
    )


def _selection_sort_key(selection: Node) -> tuple:
    if isinstance(selection, FieldNode):
        primary = selection.name.value
        name = selection.alias.value if selection.alias else selection.name.value
    elif isinstance(selection, FragmentSpreadNode):
        primary = name = selection.name.value
    else:
        condition = selection.type_condition.name.value if selection.type_condition else ""
        primary = condition + print_ast(selection.selection_set)
        name = condition
    return (primary, selection.kind, name, print_ast(selection))


def _sort_selection_set(
    selection_set: Optional[SelectionSetNode], keep_order: bool
) -> Optional[SelectionSetNode]:
    if selection_set is None:
        return None
    selections = [_sort_selection(selection, keep_order) for selection in selection_set.selections]
    if not keep_order:
        selections.sort(key=_selection_sort_key)
    return _replace(selection_set, selections=tuple(selections))


def _sort_selection(selection: Node, keep_order: bool) -> Node:
    if isinstance(selection, FieldNode):
        return _replace(
            selection,
            arguments=_by_name(selection.arguments),
            directives=_sort_directives(selection.directives),
            selection_set=_sort_selection_set(selection.selection_set, keep_order),
        )
    if isinstance(selection, InlineFragmentNode):
        return _replace(
            selection,
            directives=_sort_directives(selection.directives),
            selection_set=_sort_selection_set(selection.selection_set, keep_order),
        )
    return _replace(selection, directives=_sort_directives(selection.directives))


def _sort_definition(definition: Node) -> Node:
    if isinstance(definition, OperationDefinitionNode):
        keep_order = definition.operation == OperationType.MUTATION
        variable_definitions = tuple(
            _replace(variable, directives=_sort_directives(variable.directives))
            for variable in sorted(
                definition.variable_definitions or (),
                key=lambda v: v.variable.name.value,
            )
        )
        return _replace(
            definition,
            variable_definitions=variable_definitions,
            directives=_sort_directives(definition.directives),
            selection_set=_sort_selection_set(definition.selection_set, keep_order),
        )
    if isinstance(definition, FragmentDefinitionNode):
        return _replace(
            definition,
            directives=_sort_directives(definition.directives),
            selection_set=_sort_selection_set(definition.selection_set, False),
        )
    return definition


def sort_document(document: DocumentNode) -> DocumentNode:
    """
    Return a copy of document in canonical order.
    Operations come before fragments; fragments are ordered by name.
    """
    indexed = list(enumerate(_sort_definition(d) for d in document.definitions))

    def definition_key(item: tuple) -> tuple:
        index, definition = item
        rank = 0 if isinstance(definition, OperationDefinitionNode) else 1
        name = definition.name.value if getattr(definition, "name", None) else ""
        return (rank, name, index)

    indexed.sort(key=definition_key)
    return _replace(document, definitions=tuple(definition for _, definition in indexed))


def print_canonical(document: DocumentNode) -> str:
    printed: List[str] = []
    for definition in document.definitions:
        text = print_ast(definition)
        # anonymous queries print in shorthand form; keep the keyword explicit
        if isinstance(definition, OperationDefinitionNode) and text.startswith("{"):
            text = "query " + text
        printed.append(text)
    return WHITESPACE_PATTERN.sub(" ", "\n".join(printed)).strip()


def canonicalize_text(text: str, add_typename: bool = False) -> str:
    """Canonicalize an already self-contained GraphQL document."""
    document = parse(text, no_location=True)
    if add_typename:
        document = add_typename_to_document(document)
    return print_canonical(sort_document(document))


def canonicalize(
    record: OperationRecord,
    registry: Mapping[str, OperationRecord],
    add_typename: bool = False,
) -> str:
    """Merge record with its fragments and return the canonical document text."""
    return canonicalize_text(merge_query(record, registry), add_typename=add_typename)


def persist(
    record: OperationRecord,
    registry: Mapping[str, OperationRecord],
    add_typename: bool = False,
) -> Dict[str, str]:
    """Canonicalize and hash one record: {"hash": ..., "query": ...}."""
    text = canonicalize(record, registry, add_typename=add_typename)
    return {"hash": hash_query(text), "query": text}
