"""
ABOUTME: Rendered report surface over an lxml.html tree
ABOUTME: Text fragment handles, block reads/writes and the current pointer selection
"""

import html as html_module
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from lxml import etree
from lxml import html as lxml_html

from .common import (
    BLOCK_ID_ATTR,
    BLOCK_TAGS,
    BLOCK_TYPE_ATTR,
    REPORT_NAME_ATTR,
    Block,
    make_fragment_id,
    split_fragment_id,
    text_fingerprint,
)
from utils import sanitize_xml_string


# Block type inferred from the tag of an imported element without data-block-type
TAG_TYPES = {
    'p': 'paragraph',
    'h1': 'heading1',
    'h2': 'heading2',
    'h3': 'heading3',
    'h4': 'heading3',
    'h5': 'heading3',
    'h6': 'heading3',
    'blockquote': 'quote',
    'hr': 'divider',
    'table': 'table',
}

LIST_CONTAINER_TYPES = {'ul': 'bullet', 'ol': 'number'}

BLOCK_ID_PATTERN = re.compile(r'^b(\d+)$')


class TextFragment:
    """
    Handle on one run of character data in the tree.

    lxml keeps character data on elements rather than in separate nodes: a
    run is either an element's ``text`` (before its first child) or its
    ``tail`` (after its closing tag). Adjacent runs are always stored as one
    string, which is why splitting and wrapping happen in one step here.
    """

    __slots__ = ('owner', 'slot')

    def __init__(self, owner, slot: str):
        if slot not in ('text', 'tail'):
            raise ValueError(f"Unknown fragment slot: {slot!r}")
        self.owner = owner
        self.slot = slot

    def __eq__(self, other):
        if not isinstance(other, TextFragment):
            return NotImplemented
        return self.owner is other.owner and self.slot == other.slot

    def __hash__(self):
        return hash((id(self.owner), self.slot))

    def __repr__(self):
        return f"TextFragment(<{self.owner.tag}>.{self.slot}={self.value!r})"

    @property
    def value(self) -> str:
        return getattr(self.owner, self.slot) or ''

    @property
    def parent(self):
        """Element that contains this run"""
        if self.slot == 'text':
            return self.owner
        return self.owner.getparent()

    def length(self) -> int:
        return len(self.value)

    def split_at(self, offset: int) -> Tuple[str, str]:
        """Text on either side of offset (clamped to the fragment)"""
        value = self.value
        offset = max(0, min(offset, len(value)))
        return value[:offset], value[offset:]

    def wrap(self, start: int, end: int, wrapper):
        """
        Split the run at start/end and move the middle into wrapper.

        The wrapper is inserted at the position of the middle piece; text
        before stays where it was and text after becomes the wrapper's tail.

        Returns:
            The wrapper element, now attached to the tree
        """
        before, rest = self.split_at(start)
        middle, after = rest[:max(0, end - start)], rest[max(0, end - start):]
        wrapper.text = middle
        wrapper.tail = after or None
        if self.slot == 'text':
            self.owner.text = before or None
            self.owner.insert(0, wrapper)
        else:
            parent = self.owner.getparent()
            self.owner.tail = before or None
            parent.insert(parent.index(self.owner) + 1, wrapper)
        return wrapper


@dataclass
class Anchor:
    """Pointer position: a text fragment and a character offset inside it"""
    fragment: TextFragment
    offset: int


def iter_fragments_in(elem) -> Iterator[TextFragment]:
    """
    Generator: non-empty text fragments under elem in document order.

    The tail of elem itself is outside elem and is not yielded.
    """
    if not isinstance(elem.tag, str):
        # Comments and processing instructions carry no report text
        return
    if elem.text:
        yield TextFragment(elem, 'text')
    for child in elem:
        yield from iter_fragments_in(child)
        if child.tail:
            yield TextFragment(child, 'tail')


def inner_html(elem) -> str:
    """Serialized content of elem without its own tag"""
    parts = [html_module.escape(elem.text, quote=False) if elem.text else '']
    for child in elem:
        parts.append(etree.tostring(child, encoding='unicode', method='html', with_tail=True))
    return ''.join(parts)


def parse_inline(content: str, tag: str):
    """
    Parse inline HTML content into a new element with the given tag.

    Args:
        content: Inline markup such as "<b>Critical</b> risk."
        tag: Tag of the element to create

    Returns:
        HtmlElement holding the parsed content
    """
    content = sanitize_xml_string(content or '')
    if not content.strip():
        elem = lxml_html.Element(tag)
        if content:
            elem.text = content
        return elem
    return lxml_html.fragment_fromstring(content, create_parent=tag)


def common_ancestor(first, second):
    """Smallest element containing both elements (either may be the ancestor)"""
    ancestors = []
    node = first
    while node is not None:
        ancestors.append(node)
        node = node.getparent()
    node = second
    while node is not None:
        for candidate in ancestors:
            if candidate is node:
                return node
        node = node.getparent()
    return None


class HtmlReportSurface:
    """
    Host renderer for a report rendered as HTML.

    The report root holds one element per block, in document order. Each block
    element carries ``data-block-id`` and ``data-block-type``. List items are
    bare ``<li>`` elements under the root so that every item is its own block.
    """

    def __init__(self, root, document=None, verbose: bool = False,
                 layout_callback: Optional[Callable[[], None]] = None):
        self.root = root
        self.document = document if document is not None else root
        self.verbose = verbose
        self.layout_callback = layout_callback

        self.dirty = False
        self.layout_recalc_count = 0

        # Direct user edits per block; annotations painted before an edit are stale
        self._revisions: Dict[str, int] = {}
        self._selection: Optional[Tuple[Anchor, Anchor]] = None

        self._next_block_num = 1
        self._init_blocks()

    # ------------------------------------------------------------
    # Construction and serialization
    # ------------------------------------------------------------

    @classmethod
    def from_html(cls, markup: str, verbose: bool = False) -> 'HtmlReportSurface':
        """
        Load a rendered report.

        A full document (``<html>``) or a fragment are accepted. The report root
        is the first element carrying ``data-report``; otherwise the body (or the
        fragment container) is used.
        """
        markup = sanitize_xml_string(markup or '')
        if re.search(r'<html[\s>]', markup, re.IGNORECASE):
            document = lxml_html.document_fromstring(markup)
            body = document.find('body')
            container = body if body is not None else document
        else:
            container = lxml_html.fragment_fromstring(markup, create_parent='div')
            document = container
        marked = container.xpath('.//*[@data-report]')
        root = marked[0] if marked else container
        return cls(root, document=document, verbose=verbose)

    @classmethod
    def from_blocks(cls, blocks: List[Block], report_name: Optional[str] = None,
                    verbose: bool = False) -> 'HtmlReportSurface':
        """Render a block list into a fresh report root"""
        root = lxml_html.Element('div')
        root.set('class', 'report')
        root.set('data-report', 'true')
        if report_name:
            root.set(REPORT_NAME_ATTR, report_name)
        surface = cls(root, verbose=verbose)
        previous = None
        for block in blocks:
            previous = surface._insert_rendered_after(previous, block)
        return surface

    def to_html(self) -> str:
        return etree.tostring(self.document, encoding='unicode', method='html')

    def _init_blocks(self):
        """
        Normalize root children into blocks and assign missing ids.

        Imported ``<ul>``/``<ol>`` containers are exploded into one ``<li>`` block
        per item (nested lists are flattened in document order).
        """
        for child in list(self.root):
            if isinstance(child.tag, str) and child.tag in LIST_CONTAINER_TYPES:
                self._explode_list(child)
                if self.verbose:
                    print(f"  [Load] Split <{child.tag}> into one block per item")

        max_num = 0
        for child in self._block_elements():
            match = BLOCK_ID_PATTERN.match(child.get(BLOCK_ID_ATTR, ''))
            if match:
                max_num = max(max_num, int(match.group(1)))
        self._next_block_num = max_num + 1

        seen = set()
        for child in self._block_elements():
            block_id = child.get(BLOCK_ID_ATTR)
            if not block_id or block_id in seen:
                block_id = self._next_block_id()
                child.set(BLOCK_ID_ATTR, block_id)
            seen.add(block_id)
            if not child.get(BLOCK_TYPE_ATTR):
                child.set(BLOCK_TYPE_ATTR, TAG_TYPES.get(child.tag, 'paragraph'))
            self._revisions.setdefault(block_id, 0)

    def _explode_list(self, list_elem):
        index = self.root.index(list_elem)
        items = []
        for li in list(list_elem.iter('li')):
            container = li.getparent()
            item = lxml_html.Element('li')
            item.text = li.text
            for sub in list(li):
                if isinstance(sub.tag, str) and sub.tag in LIST_CONTAINER_TYPES:
                    # Nested items become blocks of their own; keep the text after them
                    if sub.tail:
                        if len(item):
                            item[-1].tail = (item[-1].tail or '') + sub.tail
                        else:
                            item.text = (item.text or '') + sub.tail
                    continue
                item.append(sub)
            item.set(BLOCK_TYPE_ATTR, LIST_CONTAINER_TYPES.get(container.tag, 'bullet'))
            items.append(item)
        tail = list_elem.tail
        self.root.remove(list_elem)
        for offset, item in enumerate(items):
            self.root.insert(index + offset, item)
        if items:
            items[-1].tail = tail

    def _next_block_id(self) -> str:
        block_id = f"b{self._next_block_num}"
        self._next_block_num += 1
        return block_id

    # ------------------------------------------------------------
    # Block reads
    # ------------------------------------------------------------

    def _block_elements(self) -> List:
        return [child for child in self.root if isinstance(child.tag, str)]

    def block_ids(self) -> List[str]:
        return [child.get(BLOCK_ID_ATTR) for child in self._block_elements()]

    def block_element(self, block_id: str):
        """
        Element of a block.

        Raises:
            KeyError: If no block has this id
        """
        for child in self._block_elements():
            if child.get(BLOCK_ID_ATTR) == block_id:
                return child
        raise KeyError(f"No block with id {block_id!r}")

    def has_block(self, block_id: Optional[str]) -> bool:
        if not block_id:
            return False
        return any(child.get(BLOCK_ID_ATTR) == block_id for child in self._block_elements())

    def block_of(self, node) -> Optional[str]:
        """Id of the block containing node, or None if node is not inside a block"""
        current = node
        while current is not None:
            parent = current.getparent()
            if parent is self.root:
                return current.get(BLOCK_ID_ATTR)
            current = parent
        return None

    def block_text(self, block_id: str) -> str:
        return self.block_element(block_id).text_content()

    def block_fingerprint(self, block_id: str) -> str:
        """Hash of the block's text and of its fragment lengths"""
        elem = self.block_element(block_id)
        layout = ','.join(str(fragment.length()) for fragment in iter_fragments_in(elem))
        return text_fingerprint(f"{elem.text_content()}\x00{layout}")

    def block_revision(self, block_id: str) -> int:
        return self._revisions.get(block_id, 0)

    def get_block(self, block_id: str) -> Block:
        return self._element_to_block(self.block_element(block_id))

    def blocks(self) -> List[Block]:
        return [self._element_to_block(child) for child in self._block_elements()]

    def _element_to_block(self, elem) -> Block:
        block_type = elem.get(BLOCK_TYPE_ATTR) or TAG_TYPES.get(elem.tag, 'paragraph')
        block_id = elem.get(BLOCK_ID_ATTR)
        if block_type == 'table':
            rows = []
            for tr in elem.iter('tr'):
                rows.append([inner_html(cell) for cell in tr if cell.tag in ('th', 'td')])
            return Block('table', rows=rows, block_id=block_id)
        if block_type == 'divider':
            return Block('divider', block_id=block_id)
        return Block(block_type, inner_html(elem), block_id=block_id)

    # ------------------------------------------------------------
    # Block writes
    # ------------------------------------------------------------

    def render_block(self, block: Block, block_id: str):
        """Build the element for a block"""
        tag = BLOCK_TAGS[block.type]
        if block.type == 'table':
            elem = lxml_html.Element('table')
            rows = block.rows or []
            if rows:
                thead = etree.SubElement(elem, 'thead')
                thead.append(self._render_row(rows[0], 'th'))
            if len(rows) > 1:
                tbody = etree.SubElement(elem, 'tbody')
                for row in rows[1:]:
                    tbody.append(self._render_row(row, 'td'))
        elif block.type == 'divider':
            elem = lxml_html.Element('hr')
        else:
            elem = parse_inline(block.content, tag)
        elem.set(BLOCK_ID_ATTR, block_id)
        elem.set(BLOCK_TYPE_ATTR, block.type)
        return elem

    def _render_row(self, cells: List[str], cell_tag: str):
        tr = lxml_html.Element('tr')
        for cell in cells:
            tr.append(parse_inline(cell, cell_tag))
        return tr

    def _insert_rendered_after(self, block_id: Optional[str], block: Block) -> str:
        new_id = self._next_block_id()
        elem = self.render_block(block, new_id)
        if block_id is None:
            index = 0
        else:
            index = self.root.index(self.block_element(block_id)) + 1
        self.root.insert(index, elem)
        self._revisions[new_id] = 0
        return new_id

    def insert_block_after(self, block_id: Optional[str], block_type: str, content: str = '') -> str:
        """
        Insert a non-table block after block_id (None inserts at the start).

        Returns:
            Id of the new block
        """
        if block_type == 'table':
            raise ValueError("Use insert_table_after() for table blocks")
        return self._insert_rendered_after(block_id, Block(block_type, content))

    def insert_table_after(self, block_id: Optional[str], rows: List[List[str]]) -> str:
        """Insert a table block after block_id (None inserts at the start)"""
        return self._insert_rendered_after(block_id, Block('table', rows=rows))

    def remove_block(self, block_id: str):
        """
        Remove a block element; whitespace after it is kept.

        Raises:
            KeyError: If no block has this id
        """
        self.block_element(block_id).drop_tree()
        self._revisions.pop(block_id, None)

    def set_block_content(self, block_id: str, content: str):
        """
        Replace the content of a block as a direct user edit would.

        Annotations painted inside the block before this call are invalidated.
        """
        elem = self.block_element(block_id)
        replacement = parse_inline(content, elem.tag)
        for child in list(elem):
            elem.remove(child)
        elem.text = replacement.text
        for child in list(replacement):
            elem.append(child)
        self._revisions[block_id] = self._revisions.get(block_id, 0) + 1

    def request_layout_recalc(self):
        self.layout_recalc_count += 1
        if self.layout_callback is not None:
            self.layout_callback()

    def mark_dirty(self, dirty: bool = True):
        self.dirty = bool(dirty)

    # ------------------------------------------------------------
    # Text fragments
    # ------------------------------------------------------------

    def iter_text_fragments(self, container=None) -> Iterator[TextFragment]:
        """
        Generator: text fragments under container in document order.

        For the report root only the content of blocks is walked; whitespace
        between block elements is not report text.
        """
        if container is None or container is self.root:
            for child in self._block_elements():
                yield from iter_fragments_in(child)
            return
        yield from iter_fragments_in(container)

    def text_fragments_of(self, container=None) -> List[TextFragment]:
        return list(self.iter_text_fragments(container))

    def normalize(self, container=None):
        """
        Merge artificial text boundaries under container.

        lxml already stores adjacent character data as one string; what is left
        to clean up are empty strings produced by splitting at an edge.
        """
        target = self.root if container is None else container
        for elem in target.iter():
            if elem.text == '':
                elem.text = None
            if elem is not target and elem.tail == '':
                elem.tail = None

    def is_attached(self, elem) -> bool:
        """True if elem is inside the report root"""
        node = elem
        while node is not None:
            if node is self.root:
                return True
            node = node.getparent()
        return False

    def is_live(self, fragment: TextFragment) -> bool:
        parent = fragment.parent
        return parent is not None and fragment.length() > 0 and self.is_attached(parent)

    def fragment_id(self, fragment: TextFragment) -> Optional[str]:
        """Stable id "<block_id>:<index>" of a fragment, or None if outside any block"""
        block_id = self.block_of(fragment.parent)
        if block_id is None:
            return None
        for index, candidate in enumerate(iter_fragments_in(self.block_element(block_id))):
            if candidate == fragment:
                return make_fragment_id(block_id, index)
        return None

    def fragment_by_id(self, fragment_id: str) -> Optional[TextFragment]:
        """Resolve a fragment id back to a handle, or None if it no longer exists"""
        try:
            block_id, index = split_fragment_id(fragment_id)
            block_elem = self.block_element(block_id)
        except (KeyError, ValueError):
            return None
        for position, fragment in enumerate(iter_fragments_in(block_elem)):
            if position == index:
                return fragment
        return None

    def anchor_at(self, block_id: str, offset: int, prefer_end: bool = False) -> Optional[Anchor]:
        """
        Convert a character offset within a block's text into an anchor.

        At a boundary between two fragments the following fragment is chosen,
        unless prefer_end is set (used for selection ends).

        Returns:
            Anchor, or None if the block has no text or offset is out of range
        """
        fragments = list(iter_fragments_in(self.block_element(block_id)))
        if not fragments or offset < 0:
            return None
        position = 0
        for index, fragment in enumerate(fragments):
            length = fragment.length()
            end = position + length
            if offset < end or (offset == end and (prefer_end or index == len(fragments) - 1)):
                return Anchor(fragment, offset - position)
            position = end
        return None

    # ------------------------------------------------------------
    # Pointer selection
    # ------------------------------------------------------------

    def select(self, start: Anchor, end: Anchor):
        """Set the current pointer selection (what a user drag would produce)"""
        self._selection = (start, end)

    def clear_selection(self):
        self._selection = None

    def current_selection_anchors(self):
        """
        Current selection as (start_anchor, end_anchor, container), or None.

        The container is the smallest element enclosing both anchors.
        """
        if self._selection is None:
            return None
        start, end = self._selection
        first_parent = start.fragment.parent
        second_parent = end.fragment.parent
        if first_parent is None or second_parent is None:
            return None
        container = common_ancestor(first_parent, second_parent)
        if container is None:
            return None
        return start, end, container

    def report_name(self) -> Optional[str]:
        """Report title from data-report-name, the document <title>, or the first heading1"""
        name = self.root.get(REPORT_NAME_ATTR)
        if name:
            return name.strip()
        titles = self.document.xpath('//title') if self.document is not self.root else []
        if titles and titles[0].text_content().strip():
            return titles[0].text_content().strip()
        for elem in self._block_elements():
            if elem.get(BLOCK_TYPE_ATTR) == 'heading1':
                text = elem.text_content().strip()
                if text:
                    return text
        return None
