"""
Tests for the read-only SQL guard

Tests:
- Unsafe statements (writes, stacked statements, psql meta-commands)
- Malformed statements (open literals, unbalanced parentheses, dangling tails)
- Keywords inside literals and comments
- Default LIMIT injection
"""

import pytest

from askdb.core.models import Verdict
from askdb.core.sql_guard import apply_default_limit, dangling_tail, validate_sql
from askdb.core.sql_lexer import scan


class TestUnsafe:
    """Anything that is not a single read-only statement"""

    def test_drop_with_trailing_comment(self):
        """DROP followed by a comment is rejected, not just the comment"""
        v = validate_sql("DROP TABLE users; -- DELETE everything")
        assert v.verdict is Verdict.REJECTED_UNSAFE
        assert any("DROP" in r for r in v.reasons)
        assert any("SELECT or WITH" in r for r in v.reasons)

    @pytest.mark.parametrize("sql", [
        "DELETE FROM orders",
        "UPDATE orders SET status = 'x'",
        "INSERT INTO orders (id) VALUES (1)",
        "TRUNCATE orders",
        "SELECT 1; DROP TABLE orders",
        "WITH x AS (DELETE FROM orders RETURNING *) SELECT * FROM x",
        "GRANT SELECT ON orders TO public",
    ])
    def test_writes_rejected(self, sql):
        assert validate_sql(sql).verdict is Verdict.REJECTED_UNSAFE

    def test_stacked_select_rejected(self):
        """Two reads are still two statements"""
        v = validate_sql("SELECT 1; SELECT 2")
        assert v.verdict is Verdict.REJECTED_UNSAFE
        assert "Multiple statements are not allowed" in v.reasons

    def test_psql_meta_command(self):
        assert validate_sql("SELECT 1 \\gdesc").verdict is Verdict.REJECTED_UNSAFE

    @pytest.mark.parametrize("sql", [
        "drop table x",
        "DeLeTe from t",
        "select 1; drop table x",
        "with x as (delete from t returning *) select * from x",
        "SELECT id FROM t WHERE id IN (sElEcT 1); tRuNcAtE t",
    ])
    def test_any_case_rejected(self, sql):
        assert validate_sql(sql).verdict is Verdict.REJECTED_UNSAFE

    def test_escape_string_does_not_hide_code(self):
        """Inside E'...' a backslash escapes the quote, so the literal ends later"""
        v = validate_sql("SELECT E'\\'' ; DROP TABLE users; --'")
        assert v.verdict is Verdict.REJECTED_UNSAFE
        assert any("DROP" in r for r in v.reasons)

    @pytest.mark.parametrize("sql", [
        "SELECT $$ ' $$; DROP TABLE users; SELECT '$$",
        "SELECT $body$ it's $body$; DELETE FROM t",
    ])
    def test_dollar_quote_does_not_hide_code(self, sql):
        assert validate_sql(sql).verdict is Verdict.REJECTED_UNSAFE

    def test_rejected_never_accepted(self):
        v = validate_sql("DROP TABLE users")
        assert not v.accepted


class TestLiteralsAndComments:
    """Keywords only count in code"""

    def test_keyword_inside_string_literal(self):
        v = validate_sql("SELECT * FROM audit_log WHERE action = 'DELETE'")
        assert v.verdict is Verdict.ACCEPTED

    def test_keyword_inside_comment(self):
        v = validate_sql("SELECT id FROM orders -- never DROP this\nWHERE id > 1")
        assert v.verdict is Verdict.ACCEPTED

    def test_keyword_inside_block_comment(self):
        assert validate_sql("SELECT /* update later */ id FROM orders").accepted

    def test_quoted_identifier_with_keyword(self):
        assert validate_sql('SELECT "update" FROM changes').accepted

    def test_column_names_containing_keywords(self):
        """created_at / updated_at are not CREATE / UPDATE"""
        assert validate_sql("SELECT created_at, updated_at FROM orders").accepted

    def test_semicolon_inside_literal(self):
        v = validate_sql("SELECT ';' AS sep FROM orders")
        assert v.accepted
        assert v.sql == "SELECT ';' AS sep FROM orders"

    def test_trailing_semicolon_removed(self):
        v = validate_sql("SELECT id FROM orders;")
        assert v.accepted
        assert v.sql == "SELECT id FROM orders"

    def test_escaped_quote(self):
        assert validate_sql("SELECT * FROM customers WHERE name = 'O''Brien'").accepted

    def test_keyword_inside_escape_string(self):
        assert validate_sql("SELECT E'it\\'s DROP' AS s FROM t").accepted

    @pytest.mark.parametrize("sql", [
        "SELECT $$DROP TABLE x$$ AS s",
        "SELECT $tag$ a $$ b; DELETE $tag$ AS s",
    ])
    def test_keyword_inside_dollar_quote(self, sql):
        assert validate_sql(sql).accepted

    def test_dollar_in_identifier_is_not_a_quote(self):
        assert validate_sql("SELECT a$b$ FROM t").accepted

    def test_nested_block_comment(self):
        assert validate_sql("SELECT /* outer /* inner */ DROP still comment */ id FROM t").accepted

    def test_statement_keywords_as_column_names(self):
        assert validate_sql("SELECT copy, call, vacuum FROM t").accepted


class TestMalformed:
    """Structurally broken statements"""

    def test_empty(self):
        assert validate_sql("   ").verdict is Verdict.REJECTED_MALFORMED

    def test_unbalanced_parentheses(self):
        v = validate_sql("SELECT COUNT(* FROM orders")
        assert v.verdict is Verdict.REJECTED_MALFORMED
        assert any("parentheses" in r for r in v.reasons)

    def test_extra_closing_parenthesis(self):
        assert validate_sql("SELECT id) FROM orders").verdict is Verdict.REJECTED_MALFORMED

    def test_unterminated_dollar_quote(self):
        v = validate_sql("SELECT $$ abc FROM t")
        assert v.verdict is Verdict.REJECTED_MALFORMED
        assert any("Unterminated" in r for r in v.reasons)

    def test_unterminated_literal(self):
        v = validate_sql("SELECT * FROM orders WHERE created_at > CURRENT_DATE - INTERVAL '6")
        assert v.verdict is Verdict.REJECTED_MALFORMED
        assert any("Unterminated" in r for r in v.reasons)

    @pytest.mark.parametrize("sql,tail", [
        ("SELECT * FROM orders WHERE", "WHERE"),
        ("SELECT * FROM orders o LEF", "LEF"),
        ("SELECT * FROM orders WHERE total >", ">"),
        ("SELECT id, FROM orders GROUP BY", "BY"),
        ("SELECT id FROM orders ORDER BY id,", ","),
    ])
    def test_dangling_tail(self, sql, tail):
        v = validate_sql(sql)
        assert v.verdict is Verdict.REJECTED_MALFORMED
        assert dangling_tail(scan(sql).stripped) == tail

    def test_with_without_main_select(self):
        v = validate_sql("WITH totals AS (SELECT 1 AS n)")
        assert v.verdict is Verdict.REJECTED_MALFORMED
        assert "WITH clause has no main SELECT" in v.reasons

    def test_cte_accepted(self):
        assert validate_sql("WITH totals AS (SELECT 1 AS n) SELECT n FROM totals").accepted


class TestDefaultLimit:
    """LIMIT is added to plain row listings only"""

    def test_plain_select_gets_limit(self):
        assert apply_default_limit("SELECT id FROM orders", 5000) == "SELECT id FROM orders\nLIMIT 5000"

    def test_grouped_query_untouched(self):
        sql = "SELECT status, COUNT(*) FROM orders GROUP BY status"
        assert apply_default_limit(sql, 5000) == sql

    def test_existing_limit_untouched(self):
        sql = "SELECT id FROM orders ORDER BY id LIMIT 10"
        assert apply_default_limit(sql, 5000) == sql

    def test_limit_survives_trailing_comment(self):
        sql = "SELECT id FROM orders -- newest first"
        out = apply_default_limit(sql, 100)
        assert out.endswith("\nLIMIT 100")
