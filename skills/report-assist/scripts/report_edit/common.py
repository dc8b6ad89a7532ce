"""
ABOUTME: Shared constants, data classes and error types for report assist edits
ABOUTME: Blocks, selection spans, annotations and merge results
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ============================================================
# Constants
# ============================================================

BLOCK_TYPES = (
    'paragraph', 'heading1', 'heading2', 'heading3',
    'bullet', 'number', 'quote', 'divider', 'table',
)

HEADING_TYPES = ('heading1', 'heading2', 'heading3')

# Rendered tag for each block type. List items render as bare <li> elements
# under the report root: the block model is flat and has no list containers.
BLOCK_TAGS = {
    'paragraph': 'p',
    'heading1': 'h1',
    'heading2': 'h2',
    'heading3': 'h3',
    'bullet': 'li',
    'number': 'li',
    'quote': 'blockquote',
    'divider': 'hr',
    'table': 'table',
}

MERGE_MODES = ('replace', 'insert', 'append')

BLOCK_ID_ATTR = 'data-block-id'
BLOCK_TYPE_ATTR = 'data-block-type'
HIGHLIGHT_ATTR = 'data-ai-highlight'
ANNOTATION_ID_ATTR = 'data-annotation-id'
STATE_ATTR = 'data-state'
REPORT_NAME_ATTR = 'data-report-name'

FRAGMENT_ID_SEPARATOR = ':'


# ============================================================
# Errors
# ============================================================

class AssistError(Exception):
    """Base class for report assist failures"""


class SelectionUnresolvable(AssistError):
    """Selection anchors no longer point at live text; nothing is selected"""


class EmptyReply(AssistError):
    """The reply parsed to zero blocks"""


class StaleResult(AssistError):
    """A reply arrived for a request whose version token is no longer current"""


class AnchorNotFound(AssistError):
    """Replace-by-search could not find the original text in the anchor block"""


# ============================================================
# Data Classes
# ============================================================

@dataclass
class Block:
    """One structural unit of the report"""
    type: str
    content: str = ''                                # Inline HTML (<b>, <i>, text)
    rows: Optional[List[List[str]]] = None           # Table only; first row is the header
    block_id: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if self.type not in BLOCK_TYPES:
            raise ValueError(f"Unknown block type: {self.type!r}")
        if self.type == 'table':
            if self.rows is None:
                self.rows = []
            self.content = ''
        else:
            self.rows = None
            if self.content is None:
                self.content = ''

    @property
    def header(self) -> List[str]:
        if self.type != 'table' or not self.rows:
            return []
        return self.rows[0]

    @property
    def body_rows(self) -> List[List[str]]:
        if self.type != 'table' or not self.rows:
            return []
        return self.rows[1:]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.type}
        if self.type == 'table':
            data['rows'] = [list(row) for row in self.rows]
        else:
            data['content'] = self.content
        if self.block_id:
            data['id'] = self.block_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Block':
        if 'type' not in data:
            raise ValueError(f"Block entry without 'type': {data!r}")
        rows = data.get('rows')
        if rows is not None:
            # Accept the {"cells": [{"content": ...}]} shape used by the editor.
            normalized = []
            for row in rows:
                if isinstance(row, dict):
                    row = [cell.get('content', '') if isinstance(cell, dict) else cell
                           for cell in row.get('cells', [])]
                normalized.append([str(cell) for cell in row])
            rows = normalized
        return cls(
            type=data['type'],
            content=data.get('content', '') or '',
            rows=rows,
            block_id=data.get('id'),
        )


@dataclass
class SpanFragment:
    """Selected slice [start_offset, end_offset) of one text fragment"""
    fragment_id: str
    start_offset: int
    end_offset: int

    @property
    def length(self) -> int:
        return max(0, self.end_offset - self.start_offset)


@dataclass
class SelectionSpan:
    """Offset-based description of a selected run of text"""
    fragments: List[SpanFragment] = field(default_factory=list)
    original_text: str = ''
    start_block_id: Optional[str] = None
    end_block_id: Optional[str] = None
    fingerprints: Dict[str, str] = field(default_factory=dict)  # block_id -> text hash at capture

    def is_empty(self) -> bool:
        return not self.fragments

    @property
    def block_ids(self) -> List[str]:
        """Ids of the blocks touched by this span, in document order"""
        seen = []
        for frag in self.fragments:
            block_id, _ = split_fragment_id(frag.fragment_id)
            if block_id not in seen:
                seen.append(block_id)
        return seen


@dataclass
class BlockSelection:
    """Whole-block selection; mutually exclusive with a SelectionSpan"""
    block_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        unique = []
        for block_id in self.block_ids:
            if block_id not in unique:
                unique.append(block_id)
        self.block_ids = unique

    def is_empty(self) -> bool:
        return not self.block_ids


@dataclass
class Annotation:
    """Visible marker wrapping one fragment of a span"""
    annotation_id: str
    fragment_ref: str                 # Fragment id that was wrapped
    element: Any = field(default=None, repr=False, compare=False)
    block_id: Optional[str] = None
    block_revision: int = 0           # Block edit revision at paint time
    visual_state: str = 'idle'

    @property
    def text(self) -> str:
        if self.element is None:
            return ''
        return self.element.text_content()


@dataclass
class MergeResult:
    """Result of applying a reply to the document"""
    applied: bool
    mode: str
    inserted_block_ids: List[str] = field(default_factory=list)
    removed_block_ids: List[str] = field(default_factory=list)
    fallback: Optional[str] = None    # None | 'text_search' | 'append'
    warning: bool = False
    message: Optional[str] = None


# ============================================================
# Helper Functions
# ============================================================

def make_fragment_id(block_id: str, index: int) -> str:
    """Build a fragment id from its block id and position within the block"""
    return f"{block_id}{FRAGMENT_ID_SEPARATOR}{index}"


def split_fragment_id(fragment_id: str) -> Tuple[str, int]:
    """
    Split a fragment id into (block_id, index).

    Block ids may themselves contain the separator, so the split happens on
    the last occurrence.

    Raises:
        ValueError: If the id has no numeric index suffix
    """
    block_id, sep, index = fragment_id.rpartition(FRAGMENT_ID_SEPARATOR)
    if not sep or not index.isdigit():
        raise ValueError(f"Malformed fragment id: {fragment_id!r}")
    return block_id, int(index)


def text_fingerprint(text: str) -> str:
    """Short, stable hash of block text used to detect edits after capture"""
    return hashlib.sha256((text or '').encode('utf-8')).hexdigest()[:16]
