"""
GraphQL document handling.

Documents are parsed once, when an operation function is created, to find
the operation type and the single top-level field whose value is returned to
the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from graphql import (
    DocumentNode,
    FieldNode,
    GraphQLSyntaxError,
    OperationDefinitionNode,
    parse,
    print_ast,
)

from ..exceptions import DocumentError
from .models import GraphQLOperationType


@dataclass(frozen=True)
class GraphQLOperation:
    """A parsed single-field GraphQL operation."""

    document: str
    operation_type: GraphQLOperationType
    result_key: str
    operation_name: Optional[str] = None

    def to_payload(self, variables: Optional[dict] = None) -> dict:
        """Build the JSON payload sent to the server."""
        payload = {"query": self.document, "variables": variables or {}}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        return payload


def parse_document(document: Union[str, DocumentNode]) -> DocumentNode:
    """
    Parse a document string, passing parsed documents through.

    Raises:
        DocumentError: If the document is not valid GraphQL
    """
    if isinstance(document, DocumentNode):
        return document
    try:
        return parse(document)
    except GraphQLSyntaxError as e:
        raise DocumentError(f"Invalid GraphQL document: {e.message}") from e


def parse_operation(document: Union[str, DocumentNode]) -> GraphQLOperation:
    """
    Parse an operation with exactly one definition and one top-level field.

    Args:
        document: GraphQL source or parsed document

    Returns:
        GraphQLOperation describing the document

    Raises:
        DocumentError: If the document does not have exactly one operation
            selecting exactly one field
    """
    node = parse_document(document)

    if len(node.definitions) != 1:
        raise DocumentError("Too many definitions in document")

    definition = node.definitions[0]
    if not isinstance(definition, OperationDefinitionNode):
        raise DocumentError("Document does not define an operation")

    selections = definition.selection_set.selections
    if len(selections) != 1:
        raise DocumentError("Too many selections in document")

    selection = selections[0]
    if not isinstance(selection, FieldNode):
        raise DocumentError("Top-level selection must be a field")

    # The response is keyed by the alias when there is one
    result_key = selection.alias.value if selection.alias else selection.name.value

    return GraphQLOperation(
        document=print_ast(node),
        operation_type=GraphQLOperationType(definition.operation.value),
        result_key=result_key,
        operation_name=definition.name.value if definition.name else None,
    )
