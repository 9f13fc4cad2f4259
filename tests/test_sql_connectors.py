import os
import sys
import unittest
import uuid
from importlib.util import find_spec
from unittest import mock


PG_RESOURCE = {
    "host": "db",
    "port": "5432",
    "databaseUsername": "u",
    "databasePassword": "p",
    "databaseName": "d",
    "ssl": {"ssl": False},
}


class _CountingEngine:
    """sqlite engine stand-in that records connect and dispose calls."""

    def __init__(self, setup_sql=(), attach=()):
        import sqlalchemy as sa
        from sqlalchemy.pool import StaticPool

        self.engine = sa.create_engine(
            "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
        with self.engine.connect() as conn:
            for name in attach:
                conn.exec_driver_sql(f"ATTACH DATABASE ':memory:' AS {name}")
            conn.commit()
        with self.engine.begin() as conn:
            for stmt in setup_sql:
                conn.exec_driver_sql(stmt)
        self.connects = 0
        self.disposed = 0

    def connect(self):
        self.connects += 1
        return self.engine.connect()

    def dispose(self):
        self.disposed += 1


class TestSQLConnectors(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def _patched(self, cls, engine):
        return mock.patch.object(cls, "create_engine", lambda self, res, stack: engine)

    def test_select_returns_rows(self):
        from actionkit.connectors import PostgresConnector, build_connector

        engine = _CountingEngine()
        connector = build_connector("postgresql")
        with self._patched(PostgresConnector, engine):
            result = connector.run(PG_RESOURCE, {"mode": "sql", "query": "SELECT 1 AS n"})
        self.assertTrue(result.success)
        self.assertEqual(result.rows, [{"n": 1}])
        self.assertEqual(result.extra, {})
        self.assertEqual((engine.connects, engine.disposed), (1, 1))

    def test_write_reports_affected_rows(self):
        from actionkit.connectors import PostgresConnector, build_connector

        engine = _CountingEngine(
            ["CREATE TABLE t (x INTEGER)", "INSERT INTO t VALUES (5)", "INSERT INTO t VALUES (6)", "INSERT INTO t VALUES (7)"]
        )
        connector = build_connector("postgresql")
        with self._patched(PostgresConnector, engine):
            result = connector.run(PG_RESOURCE, {"mode": "sql", "query": "UPDATE t SET x=1"})
        self.assertTrue(result.success)
        self.assertEqual(result.rows, [])
        self.assertEqual(result.extra, {"message": "Affected 3 rows."})
        self.assertEqual(engine.disposed, 1)

    def test_engine_disposed_when_query_fails(self):
        from actionkit.connectors import PostgresConnector, build_connector
        from actionkit.core.errors import OperationFailedError

        engine = _CountingEngine()
        connector = build_connector("postgresql")
        with self._patched(PostgresConnector, engine):
            with self.assertRaises(OperationFailedError):
                connector.run(PG_RESOURCE, {"mode": "sql", "query": "SELECT * FROM missing_table"})
        self.assertEqual((engine.connects, engine.disposed), (1, 1))

    def test_safe_mode_binds_context_values(self):
        from actionkit.connectors import MySQLConnector, build_connector

        engine = _CountingEngine()
        connector = build_connector("mariadb")
        self.assertIsInstance(connector, MySQLConnector)
        with self._patched(MySQLConnector, engine):
            result = connector.run(
                PG_RESOURCE,
                {"mode": "sql-safe", "query": "SELECT {{ a }} AS a, {{b}} AS b", "context": {"a": 7, "b": "x'y"}},
            )
        self.assertEqual(result.rows, [{"a": 7, "b": "x'y"}])

    def test_duplicate_columns_are_suffixed(self):
        from actionkit.connectors import PostgresConnector, build_connector

        engine = _CountingEngine()
        with self._patched(PostgresConnector, engine):
            result = build_connector("neon").run(PG_RESOURCE, {"query": "SELECT 1 AS a, 2 AS a, 3 AS b"})
        self.assertEqual(result.rows, [{"a_0": 1, "a_1": 2, "b": 3}])

    def test_result_size_cap(self):
        from actionkit.config import load_config
        from actionkit.connectors import PostgresConnector
        from actionkit.core.errors import OperationFailedError

        cfg = load_config(env={}, overrides={"sql": {"max_result_bytes": 10}})
        engine = _CountingEngine()
        with self._patched(PostgresConnector, engine):
            with self.assertRaises(OperationFailedError) as ctx:
                PostgresConnector(cfg).run(PG_RESOURCE, {"query": "SELECT 'a long enough value' AS v"})
        self.assertIn("exceeds 20MiB", ctx.exception.message)
        self.assertEqual(engine.disposed, 1)

    def test_ssh_is_unsupported_before_any_engine(self):
        from actionkit.connectors import PostgresConnector
        from actionkit.core.errors import UnsupportedError

        resource = dict(PG_RESOURCE, ssh={"ssh": True})
        with mock.patch.object(PostgresConnector, "create_engine") as create:
            with self.assertRaises(UnsupportedError):
                PostgresConnector().run(resource, {"query": "SELECT 1"})
        create.assert_not_called()

    def test_validation(self):
        from actionkit.connectors import build_connector
        from actionkit.core.errors import InvalidActionError, InvalidResourceError, ParseError

        pg = build_connector("postgresql")
        self.assertTrue(pg.validate_resource_options(PG_RESOURCE).valid)
        with self.assertRaises(InvalidResourceError):
            pg.validate_resource_options({"port": 5432})
        with self.assertRaises(InvalidResourceError):
            pg.validate_resource_options(dict(PG_RESOURCE, port=0))
        with self.assertRaises(InvalidActionError):
            pg.validate_action_options({"mode": "nosql", "query": "SELECT 1"})
        with self.assertRaises(InvalidActionError):
            pg.validate_action_options({"mode": "gui", "query": "SELECT 1"})
        with self.assertRaises(ParseError):
            pg.validate_action_options({"mode": "sql", "query": "'oops SELECT 1"})

    def test_mssql_bulk_insert(self):
        from actionkit.connectors import MSSQLConnector

        engine = _CountingEngine(["CREATE TABLE items (a INTEGER, b TEXT)"])
        resource = {"host": "h", "port": 1433, "databaseName": "d"}
        action = {
            "mode": "gui",
            "query": {"type": "bulk_insert", "table": "items", "records": [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]},
        }
        with self._patched(MSSQLConnector, engine):
            connector = MSSQLConnector()
            self.assertTrue(connector.validate_action_options(action).valid)
            result = connector.run(resource, action)
        self.assertEqual(result.extra, {"message": "Affected 2 rows."})
        self.assertEqual(engine.disposed, 1)

    def test_mssql_full_verification_needs_ca(self):
        from actionkit.connectors import MSSQLConnector
        from actionkit.core.errors import InvalidResourceError

        with self.assertRaises(InvalidResourceError):
            MSSQLConnector().validate_resource_options(
                {"host": "h", "port": 1433, "databaseName": "d", "ssl": {"ssl": True, "verificationMode": "full"}}
            )


INFORMATION_SCHEMA = [
    "CREATE TABLE information_schema.tables (table_schema TEXT, table_name TEXT)",
    "CREATE TABLE information_schema.columns (table_schema TEXT, table_name TEXT, column_name TEXT, data_type TEXT)",
    "INSERT INTO information_schema.tables VALUES ('public', 'users'), ('public', 'orders'), ('shop', 'carts')",
    "INSERT INTO information_schema.columns VALUES "
    "('public', 'users', 'id', 'integer'), ('public', 'users', 'name', 'text'), "
    "('public', 'orders', 'total', 'numeric'), ('shop', 'carts', 'sku', 'varchar')",
]


class _ScriptedConnection:
    """Connection double answering statements by prefix with canned rows."""

    def __init__(self, replies):
        self.replies = replies
        self.statements = []

    def _reply(self, sql, params=None):
        self.statements.append((sql, params))
        for prefix, rows in self.replies:
            if sql.startswith(prefix):
                return mock.Mock(all=mock.Mock(return_value=list(rows)))
        raise AssertionError(f"unexpected statement: {sql}")

    def exec_driver_sql(self, sql, *args, **kwargs):
        return self._reply(sql)

    def execute(self, statement, params=None):
        return self._reply(str(statement), params)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _ScriptedEngine:
    def __init__(self, conn):
        self.conn = conn
        self.disposed = 0

    def connect(self):
        return self.conn

    def dispose(self):
        self.disposed += 1


class TestSQLMetaInfo(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def _meta(self, cls, engine, resource):
        with mock.patch.object(cls, "create_engine", lambda self, res, stack: engine):
            return cls().get_meta_info(resource)

    def test_postgres_lists_public_tables_then_columns(self):
        from actionkit.connectors import PostgresConnector

        engine = _CountingEngine(INFORMATION_SCHEMA, attach=["information_schema"])
        meta = self._meta(PostgresConnector, engine, PG_RESOURCE)

        self.assertTrue(meta.success)
        self.assertEqual(
            meta.schema_,
            {
                "users": {"id": {"data_type": "integer"}, "name": {"data_type": "text"}},
                "orders": {"total": {"data_type": "numeric"}},
            },
        )
        self.assertEqual((engine.connects, engine.disposed), (1, 1))

    def test_mysql_uses_database_name_as_schema(self):
        from actionkit.connectors import MySQLConnector

        engine = _CountingEngine(INFORMATION_SCHEMA, attach=["information_schema"])
        meta = self._meta(MySQLConnector, engine, dict(PG_RESOURCE, databaseName="shop"))

        self.assertEqual(meta.schema_, {"carts": {"sku": {"data_type": "varchar"}}})
        self.assertEqual(engine.disposed, 1)

    def test_mssql_qualifies_tables_with_schema(self):
        from actionkit.connectors import MSSQLConnector

        engine = _CountingEngine(INFORMATION_SCHEMA, attach=["information_schema"])
        meta = self._meta(MSSQLConnector, engine, {"host": "h", "port": 1433, "databaseName": "d"})

        self.assertEqual(
            meta.schema_,
            {
                "public.users": {"id": {"data_type": "integer"}, "name": {"data_type": "text"}},
                "public.orders": {"total": {"data_type": "numeric"}},
                "shop.carts": {"sku": {"data_type": "varchar"}},
            },
        )

    def test_clickhouse_describes_each_table(self):
        from actionkit.connectors import ClickHouseConnector

        conn = _ScriptedConnection(
            [
                ("SHOW TABLES", [("events",), ("users",)]),
                ("DESCRIBE TABLE `events`", [("id", "UInt64", ""), ("ts", "DateTime", "")]),
                ("DESCRIBE TABLE `users`", [("name", "String", "")]),
            ]
        )
        engine = _ScriptedEngine(conn)
        meta = self._meta(ClickHouseConnector, engine, {"host": "ch", "port": 8123, "databaseName": "analytics"})

        self.assertEqual(
            meta.schema_,
            {
                "events": {"id": {"data_type": "UInt64"}, "ts": {"data_type": "DateTime"}},
                "users": {"name": {"data_type": "String"}},
            },
        )
        self.assertEqual([s for s, _ in conn.statements][0], "SHOW TABLES")
        self.assertEqual(engine.disposed, 1)

    def test_oracle_groups_columns_by_tablespace(self):
        from actionkit.connectors import OracleConnector

        conn = _ScriptedConnection(
            [
                (
                    "SELECT tabs.table_name",
                    [("USERS", "DATA", "ID", "NUMBER"), ("USERS", "DATA", "NAME", "VARCHAR2"), ("LOGS", "AUX", "MSG", "CLOB")],
                )
            ]
        )
        meta = self._meta(OracleConnector, _ScriptedEngine(conn), {"host": "o", "port": 1521, "name": "ORCL"})

        self.assertEqual(
            meta.schema_,
            {
                "DATA.USERS": {"ID": {"data_type": "NUMBER"}, "NAME": {"data_type": "VARCHAR2"}},
                "AUX.LOGS": {"MSG": {"data_type": "CLOB"}},
            },
        )

    def test_snowflake_lists_schema_tables(self):
        from actionkit.connectors import SnowflakeConnector

        conn = _ScriptedConnection(
            [
                ("SHOW TERSE TABLES IN SCHEMA DB.PUBLIC", [("t0", "ORDERS", "TABLE", "DB", "PUBLIC")]),
                ("DESCRIBE TABLE PUBLIC.ORDERS", [("ID", "NUMBER(38,0)"), ("NOTE", "VARCHAR(16777216)")]),
            ]
        )
        meta = self._meta(SnowflakeConnector, _ScriptedEngine(conn), SNOWFLAKE_RESOURCE)

        self.assertEqual(
            meta.schema_,
            {"PUBLIC.ORDERS": {"ID": {"data_type": "NUMBER(38,0)"}, "NOTE": {"data_type": "VARCHAR(16777216)"}}},
        )

    def test_driver_error_during_meta_is_operation_failed(self):
        from actionkit.connectors import PostgresConnector
        from actionkit.core.errors import OperationFailedError

        engine = _CountingEngine()
        with self.assertRaises(OperationFailedError):
            self._meta(PostgresConnector, engine, PG_RESOURCE)
        self.assertEqual(engine.disposed, 1)


SNOWFLAKE_RESOURCE = {
    "accountName": "acct",
    "warehouse": "wh",
    "database": "DB",
    "schema": "PUBLIC",
    "authentication": "basic",
    "authContent": {"username": "u", "password": "p"},
}


class TestDialectConnectionSettings(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def _settings(self, connector, resource):
        import contextlib

        res = connector.decode_resource(resource)
        with contextlib.ExitStack() as stack:
            return connector.engine_url(res, stack), connector.connect_args(res, stack)

    def test_mysql_and_postgres_urls(self):
        from actionkit.connectors import MySQLConnector, PostgresConnector

        url, args = self._settings(MySQLConnector(), PG_RESOURCE)
        self.assertEqual(url.drivername, "mysql+pymysql")
        self.assertEqual((url.host, url.port, url.database, url.username, url.password), ("db", 5432, "d", "u", "p"))
        self.assertEqual(args, {"connect_timeout": 5})

        url, args = self._settings(PostgresConnector(), dict(PG_RESOURCE, databaseUsername="", databaseName=""))
        self.assertEqual(url.drivername, "postgresql+pg8000")
        self.assertIsNone(url.username)
        self.assertIsNone(url.database)
        self.assertEqual(args, {"timeout": 5})

    def test_oracle_sid_and_service_names(self):
        from actionkit.connectors import OracleConnector

        base = {"host": "o", "port": 1521, "username": "scott", "password": "tiger"}
        url, args = self._settings(OracleConnector(), dict(base, connectionType="SID", name="ORCL"))
        self.assertEqual(url.drivername, "oracle+oracledb")
        self.assertEqual(url.database, "ORCL")
        self.assertEqual(dict(url.query), {})
        self.assertEqual(args, {"tcp_connect_timeout": 5})

        url, args = self._settings(OracleConnector(), dict(base, connectionType="Service", name="PDB1", ssl=True))
        self.assertIsNone(url.database)
        self.assertEqual(dict(url.query), {"service_name": "PDB1"})
        self.assertEqual(args, {"tcp_connect_timeout": 5, "protocol": "tcps"})

    def test_mssql_url_options(self):
        from actionkit.connectors import MSSQLConnector

        resource = {
            "host": "h",
            "port": 1433,
            "databaseName": "d",
            "connectionOpts": [{"key": "ApplicationIntent", "value": "ReadOnly"}, {"key": "", "value": "x"}],
            "ssl": {"ssl": True, "verificationMode": "skip"},
        }
        url, args = self._settings(MSSQLConnector(), resource)
        self.assertEqual(url.drivername, "mssql+pyodbc")
        self.assertEqual(
            dict(url.query),
            {
                "driver": "ODBC Driver 18 for SQL Server",
                "Encrypt": "yes",
                "TrustServerCertificate": "yes",
                "ApplicationIntent": "ReadOnly",
            },
        )
        self.assertEqual(args, {"timeout": 5})

    def test_clickhouse_tls_files_live_for_the_call(self):
        import contextlib

        from actionkit.connectors import ClickHouseConnector

        connector = ClickHouseConnector()
        res = connector.decode_resource(
            {
                "host": "ch",
                "port": 8443,
                "databaseName": "analytics",
                "ssl": {"ssl": True, "selfSigned": True, "caCert": "CA-PEM", "clientCert": "CERT", "privateKey": "KEY"},
            }
        )
        with contextlib.ExitStack() as stack:
            url = connector.engine_url(res, stack)
            args = connector.connect_args(res, stack)
            with open(args["verify"], encoding="utf-8") as f:
                self.assertEqual(f.read(), "CA-PEM")
            cert_path, key_path = args["cert"]
            with open(key_path, encoding="utf-8") as f:
                self.assertEqual(f.read(), "KEY")
        self.assertEqual(url.drivername, "clickhouse+http")
        self.assertEqual(dict(url.query), {"protocol": "https"})
        self.assertEqual(args["timeout"], 5)
        for path in (args["verify"], cert_path, key_path):
            self.assertFalse(os.path.exists(path))

    def test_snowflake_url_parameters(self):
        import types

        from actionkit.connectors import SnowflakeConnector

        sf = types.ModuleType("snowflake.sqlalchemy")
        sf.URL = lambda **params: params
        pkg = types.ModuleType("snowflake")
        pkg.sqlalchemy = sf
        with mock.patch.dict(sys.modules, {"snowflake": pkg, "snowflake.sqlalchemy": sf}):
            url, args = self._settings(SnowflakeConnector(), dict(SNOWFLAKE_RESOURCE, role="analyst"))
            key_url = SnowflakeConnector().engine_url(
                SnowflakeConnector().decode_resource(
                    dict(SNOWFLAKE_RESOURCE, schema="", authentication="key", authContent={"username": "u"})
                ),
                None,
            )

        self.assertEqual(
            url,
            {
                "account": "acct",
                "user": "u",
                "database": "DB",
                "warehouse": "wh",
                "schema": "PUBLIC",
                "role": "analyst",
                "password": "p",
            },
        )
        self.assertEqual(args, {"login_timeout": 5})
        self.assertEqual(key_url, {"account": "acct", "user": "u", "database": "DB", "warehouse": "wh"})

    @unittest.skipUnless(find_spec("cryptography") is not None, "cryptography not installed")
    def test_snowflake_key_pair_auth(self):
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import rsa

        from actionkit.connectors import SnowflakeConnector
        from actionkit.core.errors import ConnectFailedError

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = key.private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.TraditionalOpenSSL, serialization.NoEncryption()
        ).decode("ascii")
        resource = dict(SNOWFLAKE_RESOURCE, authentication="key", authContent={"username": "u", "privateKey": pem})

        connector = SnowflakeConnector()
        args = connector.connect_args(connector.decode_resource(resource), None)
        self.assertEqual(
            args["private_key"],
            key.private_bytes(serialization.Encoding.DER, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()),
        )

        bad = dict(resource, authContent={"username": "u", "privateKey": "not a key"})
        with self.assertRaises(ConnectFailedError):
            connector.connect_args(connector.decode_resource(bad), None)


class TestSyntaxErrorReshaping(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def test_mysql_1064_from_driver_args(self):
        from actionkit.connectors.sql import reshape_driver_error

        driver_exc = Exception(
            1064,
            "You have an error in your SQL syntax; check the manual that corresponds to your MySQL server "
            "version for the right syntax to use near 'FORM t' at line 2",
        )
        reshaped = reshape_driver_error(driver_exc)
        self.assertIsNotNone(reshaped)
        self.assertEqual(reshaped.line_number, 2)
        self.assertEqual(reshaped.to_dict(), {"lineNumber": 2, "message": "SQL syntax error near 'FORM t' at line 2"})

    def test_other_errors_pass_through(self):
        from actionkit.connectors.sql import reshape_driver_error

        self.assertIsNone(reshape_driver_error(Exception(1045, "Access denied")))
        self.assertIsNone(reshape_driver_error(Exception("boom")))

    def test_prefixed_message(self):
        from actionkit.core.errors import SQLSyntaxError, get_exit_code

        err = SQLSyntaxError.from_driver_message("Error 1064: bad thing to use near 'x' at line 7")
        self.assertEqual(err.line_number, 7)
        self.assertEqual(err.description, "SQL syntax error near 'x' at line 7")
        self.assertEqual(get_exit_code(err), 7)


class TestMaterialiser(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def test_dbapi_cursor_values_are_converted(self):
        from actionkit import rows_to_mappings

        ident = uuid.UUID("12345678-9abc-def0-1234-56789abcdef0")

        class Cursor:
            description = [("id",), ("name",), ("n",)]

            def __iter__(self):
                return iter([(ident, b"alice", 1), (ident, bytearray(b"bob"), None)])

        rows = rows_to_mappings(Cursor())
        self.assertEqual(
            rows,
            [
                {"id": "12345678-9abc-def0-1234-56789abcdef0", "name": "alice", "n": 1},
                {"id": "12345678-9abc-def0-1234-56789abcdef0", "name": "bob", "n": None},
            ],
        )
        self.assertEqual(uuid.UUID(rows[0]["id"]), ident)

    def test_sixteen_byte_strings_stay_text(self):
        from actionkit.connectors.sql.materialize import convert_value

        self.assertEqual(convert_value(b"0123456789abcdef"), "0123456789abcdef")
        self.assertEqual(convert_value(uuid.UUID(int=1)), "00000000-0000-0000-0000-000000000001")

    def test_empty_cursor(self):
        from actionkit.connectors.sql.materialize import estimate_size, rows_to_mappings

        class Cursor:
            description = [("a",)]

            def __iter__(self):
                return iter([])

        self.assertEqual(rows_to_mappings(Cursor()), [])
        self.assertEqual(estimate_size([]), 0)


if __name__ == "__main__":
    unittest.main()
