"""
Unit tests for AGE Cypher execution (BaseMixin).

Covers the tenant session setup, bound parameter execution through a
prepared statement, the literal-substitution retry on the AGE
"third argument of cypher function must be a parameter" error, the
cached capability flag, and the literal escaping helpers.

The pool and connection are MagicMocks; no PostgreSQL is needed.
"""

import json

import psycopg2
import pytest

from knowledge_core.errors import (
    PARAM_BINDING_ERROR_SIGNATURE,
    ParameterBindingUnsupportedError,
)
from knowledge_core.lib.age_client import AGEClient
from knowledge_core.lib.age_client.base import (
    dollar_quote,
    substitute_params,
    to_cypher_literal,
    validate_identifier,
)

CHAIN_ROW = {"chain": '[{"id": "c-1", "name": "Algebra", "type": null}, {"id": "c-2", "name": "Calculus", "type": null}]'}


def _is_literal_cypher(sql: str) -> bool:
    return "ag_catalog.cypher(" in sql and not sql.startswith("PREPARE")


def _reject_prepare(sql, *args):
    if sql.startswith("PREPARE"):
        raise psycopg2.Error(
            f"ERROR:  {PARAM_BINDING_ERROR_SIGNATURE}\nLINE 1: ..."
        )


@pytest.fixture
def age_client(mock_db):
    return AGEClient(mock_db, graph_name="knowledge_graph")


@pytest.mark.unit
class TestSessionSetup:
    """Tests for session() and the AGE setup statements."""

    def test_setup_order_on_one_connection(self, age_client, mock_db, mock_conn, executed_sql):
        """LOAD, search_path, then tenant, all on the acquired connection."""
        with age_client.session("tenant-1") as session:
            assert session.conn is mock_conn
            assert session.tenant_id == "tenant-1"

        sql = executed_sql()
        assert sql[0] == "LOAD 'age';"
        assert sql[1].startswith("SET search_path = ag_catalog")
        mock_db.set_tenant.assert_called_once_with(mock_conn, "tenant-1")
        mock_db.release.assert_called_once_with(mock_conn)

    def test_connection_released_on_error(self, age_client, mock_db, mock_conn):
        with pytest.raises(RuntimeError):
            with age_client.session("tenant-1"):
                raise RuntimeError("boom")

        mock_db.release.assert_called_once_with(mock_conn)

    def test_invalid_graph_name_rejected(self, mock_db):
        with pytest.raises(ValueError, match="graph name"):
            AGEClient(mock_db, graph_name="graph'; DROP TABLE x; --")

    def test_invalid_binding_mode_rejected(self, mock_db):
        with pytest.raises(ValueError, match="param_binding"):
            AGEClient(mock_db, param_binding="maybe")


@pytest.mark.unit
class TestBoundExecution:
    """Tests for the prepared-statement path."""

    def test_bound_success_sets_capability(self, age_client, mock_cursor, executed_sql):
        mock_cursor.fetchall.return_value = [CHAIN_ROW]

        chain = age_client.prerequisite_chain("Calculus", "tenant-1")

        assert [c.name for c in chain] == ["Algebra", "Calculus"]
        assert age_client.param_binding_supported is True

        sql = executed_sql()
        prepare = [s for s in sql if s.startswith("PREPARE")]
        assert len(prepare) == 1
        assert "ag_catalog.cypher('knowledge_graph'" in prepare[0]
        assert "$1) AS (chain ag_catalog.agtype)" in prepare[0]
        assert any(s.startswith("DEALLOCATE") for s in sql)
        assert not any(_is_literal_cypher(s) for s in sql)

    def test_params_sent_as_json_not_in_query_text(self, age_client, mock_cursor):
        age_client.prerequisite_chain("O'Brien", "tenant-1")

        execute_calls = [
            c for c in mock_cursor.execute.call_args_list
            if c.args[0].startswith("EXECUTE")
        ]
        assert len(execute_calls) == 1
        sent = json.loads(execute_calls[0].args[1][0])
        assert sent == {"conceptName": "O'Brien", "tenantId": "tenant-1"}

        prepare = [c.args[0] for c in mock_cursor.execute.call_args_list if c.args[0].startswith("PREPARE")]
        assert "O'Brien" not in prepare[0]

    def test_other_errors_are_not_retried(self, age_client, mock_db, mock_conn, mock_cursor, executed_sql):
        """A non-signature error degrades to [] without a literal retry."""
        def fail_execute(sql, *args):
            if sql.startswith("EXECUTE"):
                raise psycopg2.Error("canceling statement due to statement timeout")

        mock_cursor.execute.side_effect = fail_execute

        assert age_client.prerequisite_chain("Calculus", "tenant-1") == []
        assert age_client.param_binding_supported is None
        assert not any(_is_literal_cypher(s) for s in executed_sql())
        mock_db.release.assert_called_once_with(mock_conn)


@pytest.mark.unit
class TestLiteralFallback:
    """Tests for the literal-substitution retry."""

    def test_signature_error_retries_once_with_literals(
        self, age_client, mock_db, mock_conn, mock_cursor, executed_sql
    ):
        mock_cursor.execute.side_effect = _reject_prepare
        mock_cursor.fetchall.return_value = [CHAIN_ROW]

        chain = age_client.prerequisite_chain("Calculus", "tenant-1")

        assert chain[0].name == "Algebra"
        assert chain[-1].name == "Calculus"

        sql = executed_sql()
        literal = [s for s in sql if _is_literal_cypher(s)]
        assert len(literal) == 1
        assert '"Calculus"' in literal[0]
        assert '"tenant-1"' in literal[0]
        assert "ROLLBACK TO SAVEPOINT age_param_binding" in sql
        assert age_client.param_binding_supported is False
        mock_db.release.assert_called_once_with(mock_conn)

    def test_capability_is_cached(self, age_client, mock_cursor, executed_sql):
        """After one rejection, later calls skip the bound attempt."""
        mock_cursor.execute.side_effect = _reject_prepare

        age_client.prerequisite_chain("Calculus", "tenant-1")
        mock_cursor.execute.reset_mock()
        mock_cursor.execute.side_effect = _reject_prepare

        age_client.prerequisite_chain("Calculus", "tenant-1")

        sql = executed_sql()
        assert not any(s.startswith("PREPARE") for s in sql)
        assert len([s for s in sql if _is_literal_cypher(s)]) == 1

    def test_binding_off_never_prepares(self, mock_db, mock_cursor, executed_sql):
        client = AGEClient(mock_db, param_binding="off")

        client.prerequisite_chain("Calculus", "tenant-1")

        assert not any(s.startswith("PREPARE") for s in executed_sql())

    def test_binding_on_does_not_fall_back(self, mock_db, mock_conn, mock_cursor):
        client = AGEClient(mock_db, param_binding="on")
        mock_cursor.execute.side_effect = _reject_prepare

        with pytest.raises(ParameterBindingUnsupportedError):
            client._run_age_query(mock_conn, "MATCH (c) RETURN c", {"x": 1})


@pytest.mark.unit
class TestCypherLiterals:
    """Tests for to_cypher_literal() and substitute_params()."""

    def test_escapes_quotes_backslashes_and_newlines(self):
        assert to_cypher_literal('a"b') == '"a\\"b"'
        assert to_cypher_literal("it's") == '"it\\\'s"'
        assert to_cypher_literal("a\\b") == '"a\\\\b"'
        assert to_cypher_literal("line1\nline2\r\t") == '"line1\\nline2\\r\\t"'

    def test_scalars(self):
        assert to_cypher_literal(None) == "null"
        assert to_cypher_literal(True) == "true"
        assert to_cypher_literal(3) == "3"
        assert to_cypher_literal(0.5) == "0.5"

    def test_lists_and_maps(self):
        assert to_cypher_literal(["a", 1]) == '["a", 1]'
        assert to_cypher_literal({"k": "v"}) == '{k: "v"}'

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            to_cypher_literal(float("nan"))

    def test_substitutes_only_known_params(self):
        query = "MATCH (c {tenant_id: $tenantId}) WHERE c.name = $name AND c.x = $other RETURN c"
        result = substitute_params(query, {"tenantId": "t-1", "name": "Algebra"})
        assert '"t-1"' in result
        assert '"Algebra"' in result
        assert "$other" in result

    def test_injection_attempt_stays_inside_string(self):
        result = substitute_params("RETURN $name", {"name": '" OR 1=1 //'})
        assert result == 'RETURN "\\" OR 1=1 //"'

    def test_dollar_quote_avoids_collisions(self):
        assert dollar_quote("MATCH (n) RETURN n") == "$$MATCH (n) RETURN n$$"
        assert dollar_quote('RETURN "$$"') == '$q1$RETURN "$$"$q1$'

    def test_validate_identifier(self):
        assert validate_identifier("vector_documents") == "vector_documents"
        with pytest.raises(ValueError):
            validate_identifier("docs; DROP TABLE x")


@pytest.mark.unit
class TestExtractColumnSpec:
    """Tests for _extract_column_spec()."""

    def test_aliases(self, age_client):
        spec = age_client._extract_column_spec("MATCH (c) RETURN c.id AS id, c.name AS name LIMIT 5")
        assert spec == "id ag_catalog.agtype, name ag_catalog.agtype"

    def test_nested_commas_in_map(self, age_client):
        spec = age_client._extract_column_spec(
            "MATCH (r) RETURN COLLECT(DISTINCT {id: r.id, name: r.name}) AS related"
        )
        assert spec == "related ag_catalog.agtype"

    def test_property_without_alias(self, age_client):
        assert age_client._extract_column_spec("MATCH (n) RETURN n.name") == "name ag_catalog.agtype"

    def test_duplicate_names(self, age_client):
        spec = age_client._extract_column_spec("MATCH (a)-->(b) RETURN a.id, b.id")
        assert spec == "id ag_catalog.agtype, id_1 ag_catalog.agtype"

    def test_no_return(self, age_client):
        assert age_client._extract_column_spec("CREATE (n:Concept)") == "result ag_catalog.agtype"
