"""
Base mixin for Apache AGE graph database operations.

Provides tenant-scoped sessions, Cypher query execution, and the
parameter-binding fallback. All other mixins depend on the
infrastructure defined here.

Key infrastructure:
- session(): checks out one pooled connection and runs the AGE setup
  (LOAD 'age', search_path, tenant variable) once, in that order
- _run_age_query(): bound execution via a prepared statement, with a
  literal-substitution retry when the backend rejects the parameter object
- param_binding_supported: cached capability flag (None = not probed yet)
- _extract_column_spec(): parses RETURN clauses for AGE column specs
"""

import json
import logging
import math
import re
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
from psycopg2 import extras

from ...errors import PARAM_BINDING_ERROR_SIGNATURE, ParameterBindingUnsupportedError

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_PARAM_TOKEN_RE = re.compile(r'\$([A-Za-z_]\w*)')

AGTYPE = "ag_catalog.agtype"


def validate_identifier(name: str, what: str = "identifier") -> str:
    """Validate a SQL/graph identifier that has to be interpolated."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid {what}: {name!r}")
    return name


def to_cypher_literal(value: Any) -> str:
    """
    Render a Python value as a Cypher literal.

    Used only on the literal-substitution path, for backends that reject
    bound parameters. Every string is re-escaped here.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Cannot render non-finite number as Cypher literal: {value}")
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_cypher_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        parts = []
        for key, val in value.items():
            validate_identifier(str(key), "map key")
            parts.append(f"{key}: {to_cypher_literal(val)}")
        return "{" + ", ".join(parts) + "}"

    # Escape backslashes FIRST, then quotes and control characters
    escaped = (
        str(value)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def substitute_params(query: str, params: Dict[str, Any]) -> str:
    """
    Replace $name tokens with literal values.

    Only tokens whose name is a key in params are replaced. Unknown tokens
    are left alone so they surface as an AGE error instead of silently
    matching nothing.
    """
    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in params:
            return match.group(0)
        return to_cypher_literal(params[key])

    return _PARAM_TOKEN_RE.sub(_replace, query)


def dollar_quote(body: str) -> str:
    """Wrap a Cypher body in a dollar-quote tag that does not occur in it."""
    tag = "$$"
    n = 0
    while tag in body:
        n += 1
        tag = f"$q{n}$"
    return f"{tag}{body}{tag}"


class CypherSession:
    """A checked-out connection that has already run the AGE setup."""

    def __init__(self, client: "BaseMixin", conn, tenant_id: str):
        self.client = client
        self.conn = conn
        self.tenant_id = tenant_id

    def run(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        columns: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Run a Cypher query on this session's connection; returns raw agtype rows."""
        return self.client._run_age_query(self.conn, query, params, columns)


class BaseMixin:
    """Session management and Cypher query execution."""

    def __init__(
        self,
        db,
        graph_name: str = "knowledge_graph",
        param_binding: str = "auto"
    ):
        """
        Initialize AGE client.

        Args:
            db: DatabasePool shared with the rest of the process
            graph_name: AGE graph catalog name
            param_binding: "auto" (probe once), "on" (always bind), "off" (always substitute)

        Raises:
            ValueError: If graph_name is not a valid identifier or param_binding is unknown
        """
        self.db = db
        self.graph_name = validate_identifier(graph_name, "graph name")

        if param_binding not in ("auto", "on", "off"):
            raise ValueError(f"Unknown param_binding mode: {param_binding!r}")

        self._binding_pinned = param_binding != "auto"
        self.param_binding_supported: Optional[bool] = {
            "auto": None,
            "on": True,
            "off": False,
        }[param_binding]

    @classmethod
    def from_settings(cls, db, settings):
        """Build a client from a Settings instance."""
        return cls(
            db,
            graph_name=settings.graph_name,
            param_binding=settings.param_binding,
        )

    def _setup_age(self, conn, tenant_id: str):
        """Load AGE, set search path, then set the tenant variable."""
        with conn.cursor() as cur:
            cur.execute("LOAD 'age';")
            cur.execute("SET search_path = ag_catalog, \"$user\", public;")
        self.db.set_tenant(conn, tenant_id)

    @contextmanager
    def session(self, tenant_id: str) -> Iterator[CypherSession]:
        """
        Check out a connection prepared for tenant-scoped Cypher queries.

        The connection is always released, on success and on error.
        """
        conn = self.db.acquire()
        try:
            self._setup_age(conn, tenant_id)
            yield CypherSession(self, conn, tenant_id)
        finally:
            self.db.release(conn)

    def _run_age_query(
        self,
        conn,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        columns: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a Cypher query via AGE.

        Tries a bound parameter object first unless the backend is already
        known not to support it. On the AGE "third argument ... must be a
        parameter" error, records the capability and re-runs the query with
        literal substitution. Any other error propagates.

        Args:
            conn: Connection prepared by session()
            query: Cypher query with $name placeholders
            params: Parameter values
            columns: Result column names (parsed from RETURN when omitted)

        Returns:
            List of row dicts with raw agtype values
        """
        if columns:
            column_spec = ", ".join(
                f"{validate_identifier(c, 'column name')} {AGTYPE}" for c in columns
            )
        else:
            column_spec = self._extract_column_spec(query)

        if params and self.param_binding_supported is not False:
            try:
                rows = self._execute_bound(conn, query, params, column_spec)
                if self.param_binding_supported is None:
                    self.param_binding_supported = True
                    logger.info(f"AGE parameter binding supported (graph: {self.graph_name})")
                return rows
            except ParameterBindingUnsupportedError as e:
                if self._binding_pinned:
                    raise
                if self.param_binding_supported is not False:
                    logger.warning(
                        f"AGE rejected bound parameters ({e}); "
                        f"using literal substitution for graph '{self.graph_name}'"
                    )
                self.param_binding_supported = False

        return self._execute_literal(conn, query, params or {}, column_spec)

    def _execute_bound(
        self,
        conn,
        query: str,
        params: Dict[str, Any],
        column_spec: str
    ) -> List[Dict[str, Any]]:
        """
        Run the query with AGE's third-argument parameter object.

        AGE only accepts a real Param node there, so the query goes through
        a server-side prepared statement. The attempt runs inside a
        savepoint: a rejected bind rolls back to it and the session setup
        survives for the retry.
        """
        statement = f"kc_cypher_{uuid.uuid4().hex[:16]}"
        prepare_sql = (
            f"PREPARE {statement}({AGTYPE}) AS "
            f"SELECT * FROM ag_catalog.cypher('{self.graph_name}', {dollar_quote(query)}, $1) "
            f"AS ({column_spec})"
        )

        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute("SAVEPOINT age_param_binding")
            prepared = False
            try:
                cur.execute(prepare_sql)
                prepared = True
                cur.execute(f"EXECUTE {statement}(%s)", (json.dumps(params),))
                rows = cur.fetchall()
            except psycopg2.Error as e:
                cur.execute("ROLLBACK TO SAVEPOINT age_param_binding")
                if prepared:
                    self._deallocate(cur, statement)
                self._log_query_failure(e, query, column_spec, bound=True)
                if PARAM_BINDING_ERROR_SIGNATURE in str(e):
                    raise ParameterBindingUnsupportedError(str(e).strip()) from e
                raise

            cur.execute(f"DEALLOCATE {statement}")
            cur.execute("RELEASE SAVEPOINT age_param_binding")
            return [dict(row) for row in rows]

    def _deallocate(self, cur, statement: str):
        """Drop a prepared statement left behind by a failed EXECUTE."""
        cur.execute("SAVEPOINT age_deallocate")
        try:
            cur.execute(f"DEALLOCATE {statement}")
            cur.execute("RELEASE SAVEPOINT age_deallocate")
        except psycopg2.Error as e:
            cur.execute("ROLLBACK TO SAVEPOINT age_deallocate")
            logger.debug(f"Prepared statement {statement} already released: {e}")

    def _execute_literal(
        self,
        conn,
        query: str,
        params: Dict[str, Any],
        column_spec: str
    ) -> List[Dict[str, Any]]:
        """Run the query with parameter values substituted as Cypher literals."""
        substituted = substitute_params(query, params) if params else query
        age_query = (
            f"SELECT * FROM ag_catalog.cypher('{self.graph_name}', {dollar_quote(substituted)}) "
            f"AS ({column_spec})"
        )

        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            try:
                cur.execute(age_query)
            except psycopg2.Error as e:
                self._log_query_failure(e, query, column_spec, bound=False)
                raise
            return [dict(row) for row in cur.fetchall()]

    def _log_query_failure(self, error: Exception, query: str, column_spec: str, bound: bool):
        # Parameter values are not logged: they carry user text
        logger.debug("=" * 80)
        logger.debug(f"Cypher execution failed ({'bound' if bound else 'literal'} parameters)")
        logger.debug(f"Error: {str(error).strip()}")
        logger.debug(f"Column spec: {column_spec}")
        logger.debug(f"Query length: {len(query)} chars")
        logger.debug(f"First 500 chars: {query[:500]}")
        logger.debug("=" * 80)

    def _extract_column_spec(self, query: str) -> str:
        """
        Extract column names from Cypher RETURN clause to build AGE column specification.

        Parses patterns like:
        - RETURN count(n) as node_count -> "node_count ag_catalog.agtype"
        - RETURN n.id, n.name -> "id ag_catalog.agtype, name ag_catalog.agtype"
        - RETURN n -> "n ag_catalog.agtype"

        Args:
            query: Cypher query string

        Returns:
            Column specification string for the AS clause
        """
        # Match everything after the last RETURN until ORDER BY, SKIP, LIMIT, or end of string
        return_match = re.search(
            r'\bRETURN\s+(?!.*\bRETURN\b)(.+?)(?:\s+ORDER\s+BY|\s+SKIP|\s+LIMIT|$)',
            query,
            re.IGNORECASE | re.DOTALL
        )

        if not return_match:
            return f"result {AGTYPE}"

        return_clause = return_match.group(1).strip()

        columns = []
        for part in _split_top_level(return_clause):
            part = part.strip()

            as_match = re.search(r'\s+as\s+(\w+)\s*$', part, re.IGNORECASE)
            if as_match:
                columns.append(as_match.group(1))
            else:
                # Last identifier: "n.name" -> "name", "count(n)" -> "n"
                tokens = re.findall(r'\w+', part)
                columns.append(tokens[-1] if tokens else f"col{len(columns)}")

        if not columns:
            return f"result {AGTYPE}"

        # De-duplicate column names by adding suffix if needed
        seen = {}
        unique_columns = []
        for col in columns:
            if col in seen:
                seen[col] += 1
                unique_columns.append(f"{col}_{seen[col]}")
            else:
                seen[col] = 0
                unique_columns.append(col)

        return ", ".join(f"{col} {AGTYPE}" for col in unique_columns)


def _split_top_level(clause: str) -> List[str]:
    """Split a RETURN clause on commas that are not nested in (), [] or {}."""
    parts = []
    depth = 0
    current = []
    for ch in clause:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    if current:
        parts.append("".join(current))
    return parts
