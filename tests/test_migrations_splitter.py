"""
Tests for migrations.splitter - dollar-quote aware statement splitting.

Tests cover:
- Plain statements split on trailing semicolons
- Comment lines dropped outside procedural blocks, kept inside them
- $$, $tag$ and $BODY$ blocks containing semicolons stay whole
- Only an identical tag closes a block
- Trailing text without a semicolon is flushed
- Unterminated blocks are flushed rather than lost
"""

from schema_migrator.migrations.splitter import count_statements, split_statements

# ============================================================================
# Plain statements
# ============================================================================


class TestPlainStatements:
    """Statements without procedural blocks."""

    def test_splits_on_trailing_semicolons(self):
        """Each line ending in ';' ends a statement."""
        sql = "CREATE TABLE foo (id int);\nALTER TABLE foo ADD COLUMN bar text;\n"

        assert list(split_statements(sql)) == [
            "CREATE TABLE foo (id int);",
            "ALTER TABLE foo ADD COLUMN bar text;",
        ]

    def test_multiline_statement_is_joined(self):
        """A statement spanning lines is kept together until its semicolon."""
        sql = "CREATE TABLE foo (\n  id int,\n  name text\n);"

        statements = list(split_statements(sql))

        assert len(statements) == 1
        assert statements[0].startswith("CREATE TABLE foo (")
        assert statements[0].endswith(");")
        assert "name text" in statements[0]

    def test_empty_input_yields_nothing(self):
        """Blank input produces no statements."""
        assert list(split_statements("")) == []
        assert list(split_statements("\n   \n\n")) == []

    def test_comment_lines_are_dropped(self):
        """Pure '--' lines outside blocks are not part of any statement."""
        sql = "-- header comment\nCREATE TABLE foo (id int);\n  -- indented\n"

        assert list(split_statements(sql)) == ["CREATE TABLE foo (id int);"]

    def test_only_comments_yields_nothing(self):
        """A file of comments has no statements."""
        assert list(split_statements("-- one\n-- two\n")) == []

    def test_trailing_text_without_semicolon_is_flushed(self):
        """Whatever remains at end of input becomes the last statement."""
        sql = "CREATE TABLE foo (id int);\nSELECT 1"

        assert list(split_statements(sql)) == ["CREATE TABLE foo (id int);", "SELECT 1"]

    def test_semicolon_mid_line_does_not_split(self):
        """Only a semicolon at the end of the stripped line ends a statement."""
        sql = "SELECT ';' AS semi, 1\nFROM foo;"

        assert len(list(split_statements(sql))) == 1

    def test_generator_is_lazy(self):
        """split_statements returns an iterator, not a list."""
        result = split_statements("SELECT 1;")

        assert iter(result) is result
        assert next(result) == "SELECT 1;"


# ============================================================================
# Dollar-quoted blocks
# ============================================================================


FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

CREATE TRIGGER touch BEFORE UPDATE ON foo
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
"""


class TestDollarQuotedBlocks:
    """Procedural bodies are never split internally."""

    def test_function_body_with_semicolons_is_one_statement(self):
        """A $$ body containing several semicolons yields one statement."""
        statements = list(split_statements(FUNCTION_SQL))

        assert len(statements) == 2
        assert statements[0].startswith("CREATE OR REPLACE FUNCTION")
        assert "RETURN NEW;" in statements[0]
        assert statements[0].endswith("$$ LANGUAGE plpgsql;")
        assert statements[1].startswith("CREATE TRIGGER touch")

    def test_named_tag_block(self):
        """$body$ tags behave like $$."""
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $body$\n"
            "BEGIN\n"
            "  RETURN 1;\n"
            "END;\n"
            "$body$ LANGUAGE plpgsql;\n"
            "SELECT f();\n"
        )

        statements = list(split_statements(sql))

        assert len(statements) == 2
        assert statements[1] == "SELECT f();"

    def test_uppercase_tag_block(self):
        """$BODY$ tags are recognised."""
        sql = "DO $BODY$\nBEGIN\n  PERFORM 1;\nEND;\n$BODY$;\n"

        assert count_statements(sql) == 1

    def test_different_tag_inside_block_does_not_close_it(self):
        """Only the exact opening tag closes the block."""
        sql = (
            "CREATE FUNCTION outer_fn() RETURNS void AS $outer$\n"
            "BEGIN\n"
            "  EXECUTE $$SELECT 1;$$;\n"
            "  PERFORM 2;\n"
            "END;\n"
            "$outer$ LANGUAGE plpgsql;\n"
            "SELECT 3;\n"
        )

        statements = list(split_statements(sql))

        assert len(statements) == 2
        assert "PERFORM 2;" in statements[0]
        assert statements[1] == "SELECT 3;"

    def test_comment_lines_inside_block_are_preserved(self):
        """Comments inside a body are part of the body."""
        sql = (
            "DO $$\n"
            "BEGIN\n"
            "  -- keep me\n"
            "  PERFORM 1;\n"
            "END;\n"
            "$$;\n"
        )

        statements = list(split_statements(sql))

        assert len(statements) == 1
        assert "-- keep me" in statements[0]

    def test_open_and_close_on_same_line(self):
        """A one-line dollar-quoted literal does not leave a block open."""
        sql = "SELECT $$a;b$$;\nSELECT 2;\n"

        assert list(split_statements(sql)) == ["SELECT $$a;b$$;", "SELECT 2;"]

    def test_unterminated_block_is_flushed(self):
        """An unclosed block is returned as one trailing statement."""
        sql = "CREATE TABLE foo (id int);\nDO $$\nBEGIN\n  PERFORM 1;\nEND;\n"

        statements = list(split_statements(sql))

        assert len(statements) == 2
        assert statements[1].startswith("DO $$")
        assert statements[1].endswith("END;")


class TestCountStatements:
    """count_statements() matches split_statements()."""

    def test_count_matches_split(self):
        """Count equals the number of yielded statements."""
        assert count_statements(FUNCTION_SQL) == len(list(split_statements(FUNCTION_SQL)))

    def test_count_of_empty_input(self):
        """Empty input counts zero."""
        assert count_statements("") == 0
