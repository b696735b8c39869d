"""
SQL statement splitter with dollar-quote awareness.

Turns the text of one migration file into independently executable
statements. Procedural bodies (PL/pgSQL functions, DO blocks, triggers) are
delimited by a repeated dollar-quote tag (``$$``, ``$body$``, ``$BODY$``)
and may contain semicolons of their own, so a naive split on ``;`` would cut
them apart.

Scanning rules (line based):
- Outside a block, any dollar-quote tag opens a block and becomes the
  active tag.
- Inside a block, only a tag identical to the active one closes it.
- A line whose stripped text ends with ``;`` ends the statement, but only
  while no block is open.
- Lines that are pure ``--`` comments are dropped unless a block is open;
  block bodies are preserved verbatim.
- Whatever is left at end of input is flushed as a final statement, even
  when a block was never closed. The server will then reject it with a
  syntax error, which is the desired outcome.

Example:
    >>> sql = '''
    ... CREATE TABLE foo (id int);
    ... CREATE FUNCTION touch() RETURNS trigger AS $$
    ... BEGIN
    ...   NEW.updated_at = NOW();
    ...   RETURN NEW;
    ... END;
    ... $$ LANGUAGE plpgsql;
    ... '''
    >>> len(list(split_statements(sql)))
    2
"""

import re
from collections.abc import Iterator

DOLLAR_TAG_PATTERN = re.compile(r"\$[A-Za-z_]*\$")


def split_statements(sql_text: str) -> Iterator[str]:
    """
    Split SQL text into executable statements.

    The result is a lazy generator; call again to restart it.

    Args:
        sql_text: Full contents of a migration file

    Yields:
        Stripped, non-empty statements in file order
    """
    current: list[str] = []
    active_tag: str | None = None

    for line in sql_text.splitlines():
        stripped = line.strip()

        if active_tag is None and stripped.startswith("--"):
            continue

        for match in DOLLAR_TAG_PATTERN.finditer(line):
            tag = match.group(0)
            if active_tag is None:
                active_tag = tag
            elif tag == active_tag:
                active_tag = None

        current.append(line)

        if active_tag is None and stripped.endswith(";"):
            statement = "\n".join(current).strip()
            if statement:
                yield statement
            current = []

    # Safety net: flush trailing text (including an unterminated block)
    statement = "\n".join(current).strip()
    if statement:
        yield statement


def count_statements(sql_text: str) -> int:
    """Number of statements split_statements() would yield."""
    return sum(1 for _ in split_statements(sql_text))
