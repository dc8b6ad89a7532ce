"""
ABOUTME: Parses generation-service replies (loose markdown) into typed blocks
ABOUTME: One block per list item, tables flushed on the first non-table line
"""

import re
from typing import List

from .common import Block
from .inline_format import format_inline


# Table separator row: |---|:---:|---|
TABLE_SEPARATOR_PATTERN = re.compile(r'^\|[\s\-:|]+\|$')

# Table row: | cell | cell |
TABLE_ROW_PATTERN = re.compile(r'^\|.+\|$')

# Headings: '#' to '####'. There is no fourth heading level, '####' maps to heading3.
HEADING_PATTERN = re.compile(r'^(#{1,4})\s+(.+)$')
HEADING_TYPES_BY_LEVEL = {1: 'heading1', 2: 'heading2', 3: 'heading3', 4: 'heading3'}

DIVIDER_PATTERN = re.compile(r'^-{3,}$')

# Bullet item: "- x", "* x", "• x"
BULLET_PATTERN = re.compile(r'^[-*•]\s+(.+)$')

# Numbered item: "1. x", "2) x"
NUMBER_PATTERN = re.compile(r'^\d+[.)]\s+(.+)$')

QUOTE_PATTERN = re.compile(r'^>\s*(.*)$')


def split_table_row(row: str) -> List[str]:
    """
    Split a table row into inline-formatted cells.

    Only the outer pipes are stripped, so empty interior cells survive and
    rows with mismatched cell counts are kept as-is.

    Examples:
        "| A | B |" -> ["A", "B"]
        "| A || C |" -> ["A", "", "C"]
    """
    inner = row.strip()
    if inner.startswith('|'):
        inner = inner[1:]
    if inner.endswith('|'):
        inner = inner[:-1]
    return [format_inline(cell.strip()) for cell in inner.split('|')]


def parse_line(trimmed: str) -> Block:
    """
    Classify one non-blank, non-table line into a block.

    Args:
        trimmed: Line with surrounding whitespace removed

    Returns:
        Block for the line (paragraph when nothing else matches)
    """
    match = HEADING_PATTERN.match(trimmed)
    if match:
        level = len(match.group(1))
        return Block(HEADING_TYPES_BY_LEVEL[level], format_inline(match.group(2).strip()))

    if DIVIDER_PATTERN.match(trimmed):
        return Block('divider')

    match = BULLET_PATTERN.match(trimmed)
    if match:
        return Block('bullet', format_inline(match.group(1).strip()))

    match = NUMBER_PATTERN.match(trimmed)
    if match:
        return Block('number', format_inline(match.group(1).strip()))

    match = QUOTE_PATTERN.match(trimmed)
    if match:
        return Block('quote', format_inline(match.group(1).strip()))

    return Block('paragraph', format_inline(trimmed))


def parse_reply(text: str) -> List[Block]:
    """
    Parse a reply string into an ordered list of blocks.

    Processing is line by line:
    - table rows accumulate until a blank or non-table line flushes them into
      one table block (first row is the header); separator rows are dropped
    - headings, bullets, numbered items, quotes and dividers become one block
      per line; indentation is ignored (lists are flat)
    - any other non-blank line becomes a paragraph
    - blank lines only separate

    The function is pure: the same input always yields equal block lists.

    Args:
        text: Reply from the generation service

    Returns:
        List of Block (empty for an empty or blank reply)
    """
    if not text or not text.strip():
        return []

    blocks: List[Block] = []
    table_rows: List[List[str]] = []

    def flush_table():
        if table_rows:
            blocks.append(Block('table', rows=[list(row) for row in table_rows]))
            table_rows.clear()

    for line in text.replace('\r\n', '\n').replace('\r', '\n').split('\n'):
        trimmed = line.strip()

        if not trimmed:
            flush_table()
            continue

        if TABLE_SEPARATOR_PATTERN.match(trimmed):
            continue

        if TABLE_ROW_PATTERN.match(trimmed):
            table_rows.append(split_table_row(trimmed))
            continue

        flush_table()
        blocks.append(parse_line(trimmed))

    flush_table()
    return blocks
