"""
Tests for GraphQL document parsing.
"""

import pytest
from graphql import parse

from resilient_graphql.exceptions import DocumentError
from resilient_graphql.graphql import GraphQLOperationType, parse_document, parse_operation


class TestParseOperation:
    """Test single-field operation parsing."""

    def test_query_result_key(self):
        """The top-level field name is the result key."""
        operation = parse_operation("query cat($id: ID!) { cat(id: $id) { id name } }")

        assert operation.operation_type == GraphQLOperationType.QUERY
        assert operation.result_key == "cat"
        assert operation.operation_name == "cat"

    def test_alias_is_result_key(self):
        """An aliased field is keyed by its alias."""
        operation = parse_operation("mutation { created: createCat(name: \"Tom\") { id } }")

        assert operation.operation_type == GraphQLOperationType.MUTATION
        assert operation.result_key == "created"
        assert operation.operation_name is None

    def test_parsed_document_accepted(self):
        """Pre-parsed documents are used as they are."""
        node = parse("{ me { id } }")

        assert parse_document(node) is node
        assert parse_operation(node).result_key == "me"

    def test_too_many_definitions(self):
        with pytest.raises(DocumentError, match="Too many definitions"):
            parse_operation("query a { a } query b { b }")

    def test_fragment_only_document(self):
        with pytest.raises(DocumentError, match="does not define an operation"):
            parse_operation("fragment CatFields on Cat { id }")

    def test_too_many_selections(self):
        with pytest.raises(DocumentError, match="Too many selections"):
            parse_operation("query { cat { id } dog { id } }")

    def test_top_level_fragment_spread(self):
        with pytest.raises(DocumentError, match="must be a field"):
            parse_operation("query { ...QueryFields }")

    def test_syntax_error(self):
        with pytest.raises(DocumentError, match="Invalid GraphQL document"):
            parse_operation("query { cat(")

    def test_to_payload(self):
        """Payloads carry the printed query, variables and operation name."""
        operation = parse_operation("query cat($id: ID!) { cat(id: $id) { id } }")

        payload = operation.to_payload({"id": "1"})

        assert payload["variables"] == {"id": "1"}
        assert payload["operationName"] == "cat"
        assert "cat(id: $id)" in payload["query"]
        assert parse_operation("{ me { id } }").to_payload() == {
            "query": "{\n  me {\n    id\n  }\n}",
            "variables": {},
        }
