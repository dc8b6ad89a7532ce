"""
ABOUTME: Converts between report blocks and DOCX documents using python-docx
ABOUTME: Also reads and writes the plain JSON block list used by the editor
"""

import json
from pathlib import Path
from typing import Iterator, List, Tuple, Union

from docx import Document
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from .common import Block
from .inline_format import escape_markup
from .text_tree import parse_inline


# Style names written for each block type (python-docx default template)
BLOCK_STYLES = {
    'paragraph': None,
    'heading1': 'Heading 1',
    'heading2': 'Heading 2',
    'heading3': 'Heading 3',
    'bullet': 'List Bullet',
    'number': 'List Number',
    'quote': 'Quote',
}

TABLE_STYLE = 'Table Grid'

BOLD_TAGS = ('b', 'strong')
ITALIC_TAGS = ('i', 'em')


# ============================================================
# DOCX -> blocks
# ============================================================

def block_type_for_style(style_name: str, has_numbering: bool = False) -> str:
    """
    Map a paragraph style name to a block type.

    Args:
        style_name: Paragraph style name (may be empty)
        has_numbering: True if the paragraph carries direct list numbering (w:numPr)

    Returns:
        Block type; unknown styles become 'paragraph' (or 'bullet' when numbered)
    """
    name = (style_name or '').strip()
    if name == 'Title':
        return 'heading1'
    if name.startswith('Heading'):
        digits = ''.join(ch for ch in name if ch.isdigit())
        level = int(digits) if digits else 1
        if level <= 1:
            return 'heading1'
        return 'heading2' if level == 2 else 'heading3'
    if name.startswith('List Bullet'):
        return 'bullet'
    if name.startswith('List Number'):
        return 'number'
    if name in ('Quote', 'Intense Quote'):
        return 'quote'
    if has_numbering:
        return 'bullet'
    return 'paragraph'


def runs_to_inline(runs) -> str:
    """
    Convert python-docx runs to inline markup.

    Consecutive runs with the same bold/italic state are merged before
    wrapping, so "<b>ab</b>" is produced instead of "<b>a</b><b>b</b>".
    """
    groups: List[Tuple[bool, bool, str]] = []
    for run in runs:
        text = run.text
        if not text:
            continue
        state = (bool(run.bold), bool(run.italic))
        if groups and groups[-1][:2] == state:
            groups[-1] = (state[0], state[1], groups[-1][2] + text)
        else:
            groups.append((state[0], state[1], text))

    parts = []
    for bold, italic, text in groups:
        piece = escape_markup(text)
        if italic:
            piece = f"<i>{piece}</i>"
        if bold:
            piece = f"<b>{piece}</b>"
        parts.append(piece)
    return ''.join(parts)


def _has_bottom_border(p_elem) -> bool:
    pPr = p_elem.find(qn('w:pPr'))
    if pPr is None:
        return False
    pBdr = pPr.find(qn('w:pBdr'))
    return pBdr is not None and pBdr.find(qn('w:bottom')) is not None


def _has_numbering(p_elem) -> bool:
    pPr = p_elem.find(qn('w:pPr'))
    return pPr is not None and pPr.find(qn('w:numPr')) is not None


def _iter_body_items(doc) -> Iterator[Union[Paragraph, Table]]:
    """Generator: paragraphs and tables of the document body in order"""
    for element in doc.element.body:
        tag = element.tag.split('}')[-1]  # Remove namespace
        if tag == 'p':
            yield Paragraph(element, doc)
        elif tag == 'tbl':
            yield Table(element, doc)


def _cell_inline(cell) -> str:
    parts = [runs_to_inline(para.runs) for para in cell.paragraphs]
    return ' '.join(part for part in parts if part)


def load_blocks_from_docx(path: Union[str, Path]) -> List[Block]:
    """
    Read a DOCX file into report blocks.

    Empty paragraphs are skipped except those drawn as a horizontal rule
    (bottom border only), which become dividers.
    """
    doc = Document(str(path))
    blocks: List[Block] = []
    for item in _iter_body_items(doc):
        if isinstance(item, Table):
            rows = [[_cell_inline(cell) for cell in row.cells] for row in item.rows]
            blocks.append(Block('table', rows=rows))
            continue

        content = runs_to_inline(item.runs)
        if not item.text.strip():
            if _has_bottom_border(item._p):
                blocks.append(Block('divider'))
            continue
        style_name = item.style.name if item.style is not None else ''
        blocks.append(Block(block_type_for_style(style_name, _has_numbering(item._p)), content))
    return blocks


# ============================================================
# Blocks -> DOCX
# ============================================================

def _iter_inline_runs(elem, bold: bool = False, italic: bool = False) -> Iterator[Tuple[str, bool, bool]]:
    """Generator: (text, bold, italic) pieces of parsed inline markup"""
    tag = elem.tag if isinstance(elem.tag, str) else ''
    bold = bold or tag in BOLD_TAGS
    italic = italic or tag in ITALIC_TAGS
    if elem.text:
        yield elem.text, bold, italic
    for child in elem:
        yield from _iter_inline_runs(child, bold, italic)
        if child.tail:
            yield child.tail, bold, italic


def add_inline_runs(paragraph, content: str):
    """Append runs for inline markup (<b>, <i>, text) to a python-docx paragraph"""
    if not content:
        return
    for text, bold, italic in _iter_inline_runs(parse_inline(content, 'span')):
        run = paragraph.add_run(text)
        if bold:
            run.bold = True
        if italic:
            run.italic = True


def _add_divider(doc):
    paragraph = doc.add_paragraph()
    pPr = paragraph._p.get_or_add_pPr()
    pBdr = OxmlElement('w:pBdr')
    bottom = OxmlElement('w:bottom')
    bottom.set(qn('w:val'), 'single')
    bottom.set(qn('w:sz'), '6')
    bottom.set(qn('w:space'), '1')
    bottom.set(qn('w:color'), 'auto')
    pBdr.append(bottom)
    pPr.append(pBdr)
    return paragraph


def _add_table(doc, rows: List[List[str]]):
    num_cols = max((len(row) for row in rows), default=0)
    if not rows or num_cols == 0:
        return None
    table = doc.add_table(rows=len(rows), cols=num_cols)
    table.style = TABLE_STYLE
    for row_idx, row in enumerate(rows):
        for col_idx, cell_content in enumerate(row):
            add_inline_runs(table.cell(row_idx, col_idx).paragraphs[0], cell_content)
    return table


def save_blocks_to_docx(blocks: List[Block], path: Union[str, Path]) -> Path:
    """
    Write blocks to a new DOCX file.

    Returns:
        Path of the written file
    """
    doc = Document()
    for block in blocks:
        if block.type == 'table':
            _add_table(doc, block.rows)
        elif block.type == 'divider':
            _add_divider(doc)
        else:
            paragraph = doc.add_paragraph(style=BLOCK_STYLES[block.type])
            add_inline_runs(paragraph, block.content)
    output = Path(path)
    doc.save(str(output))
    return output


# ============================================================
# JSON
# ============================================================

def blocks_to_json(blocks: List[Block], indent: int = 2) -> str:
    return json.dumps([block.to_dict() for block in blocks], ensure_ascii=False, indent=indent)


def blocks_from_json(text: str) -> List[Block]:
    """
    Parse a JSON block list.

    Accepts a bare list or an object with a "blocks" list.

    Raises:
        ValueError: If the JSON is not a block list
    """
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get('blocks')
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of blocks")
    return [Block.from_dict(entry) for entry in data]
