"""Selection span resolution: pointer anchors and text searches to stable spans."""

from typing import Dict, List, Optional, Tuple

from .common import SelectionSpan, SpanFragment, split_fragment_id
from .text_tree import Anchor, TextFragment, common_ancestor, iter_fragments_in
from utils import format_text_preview


class SelectionResolverMixin:
    """
    Turns pointer selections into SelectionSpan values.

    Expects ``self.surface`` (HtmlReportSurface) and ``self.verbose``.
    """

    def resolve_selection(self, start: Optional[Anchor], end: Optional[Anchor],
                          container=None) -> SelectionSpan:
        """
        Resolve start/end anchors into a span of fragments.

        Walks every text fragment of the container in document order. The first
        and last fragments get partial bounds, fragments in between full bounds.
        The walk is widened to the whole report when the container is not inside
        a single block. A backward selection (end before start) is swapped.

        Args:
            start: Start anchor
            end: End anchor
            container: Smallest element enclosing both anchors (computed if None)

        Returns:
            SelectionSpan; empty if either anchor no longer resolves to live text
        """
        if start is None or end is None:
            return SelectionSpan()

        for label, anchor in (('start', start), ('end', end)):
            if not self.surface.is_live(anchor.fragment) or not 0 <= anchor.offset <= anchor.fragment.length():
                if self.verbose:
                    print(f"  [Selection] {label} anchor no longer resolves to live text")
                return SelectionSpan()

        if container is None:
            container = common_ancestor(start.fragment.parent, end.fragment.parent)

        start_block = self.surface.block_of(start.fragment.parent)
        end_block = self.surface.block_of(end.fragment.parent)
        walk_root = container
        if (container is None or container is self.surface.root
                or start_block is None or start_block != end_block
                or self.surface.block_of(container) is None):
            walk_root = self.surface.root

        fragments = list(self.surface.iter_text_fragments(walk_root))
        start_index = self._index_of(fragments, start.fragment)
        end_index = self._index_of(fragments, end.fragment)
        if (start_index is None or end_index is None) and walk_root is not self.surface.root:
            fragments = list(self.surface.iter_text_fragments(self.surface.root))
            start_index = self._index_of(fragments, start.fragment)
            end_index = self._index_of(fragments, end.fragment)
        if start_index is None or end_index is None:
            if self.verbose:
                print("  [Selection] Anchors are outside the report blocks")
            return SelectionSpan()

        if (end_index, end.offset) < (start_index, start.offset):
            start, end = end, start
            start_index, end_index = end_index, start_index

        pieces: List[Tuple[TextFragment, int, int]] = []
        for index in range(start_index, end_index + 1):
            fragment = fragments[index]
            piece_start = start.offset if index == start_index else 0
            piece_end = end.offset if index == end_index else fragment.length()
            if piece_end > piece_start:
                pieces.append((fragment, piece_start, piece_end))

        if not pieces:
            # Collapsed or empty walk: take the start anchor's fragment as a whole
            pieces.append((start.fragment, 0, start.fragment.length()))

        return self._span_from_pieces(pieces)

    def resolve_block_range(self, block_id: str, start_offset: int, end_offset: int,
                            end_block_id: Optional[str] = None) -> SelectionSpan:
        """
        Resolve character offsets in block text into a span.

        Args:
            block_id: Block holding the start offset
            start_offset: Offset into the start block's text
            end_offset: Offset into the end block's text
            end_block_id: Block holding the end offset (defaults to block_id)

        Returns:
            SelectionSpan; empty if a block is unknown or an offset is out of range
        """
        end_block_id = end_block_id or block_id
        if not self.surface.has_block(block_id) or not self.surface.has_block(end_block_id):
            return SelectionSpan()
        start = self.surface.anchor_at(block_id, start_offset)
        end = self.surface.anchor_at(end_block_id, end_offset, prefer_end=True)
        return self.resolve_selection(start, end)

    def find_text_span(self, text: str, block_id: Optional[str] = None) -> SelectionSpan:
        """
        Exact substring search for text, returning the first match as a span.

        Args:
            text: Plain text to find
            block_id: Restrict the search to this block; all blocks in order if None

        Returns:
            SelectionSpan of the first match, or an empty span
        """
        if not text:
            return SelectionSpan()
        if block_id is not None:
            if not self.surface.has_block(block_id):
                return SelectionSpan()
            candidates = [block_id]
        else:
            candidates = self.surface.block_ids()

        for candidate in candidates:
            fragments_info, combined_text = self._collect_fragments_info(candidate)
            match_start = combined_text.find(text)
            if match_start < 0:
                continue
            match_end = match_start + len(text)
            pieces = []
            for info in fragments_info:
                if info['end'] <= match_start or info['start'] >= match_end:
                    continue
                piece_start = max(match_start, info['start']) - info['start']
                piece_end = min(match_end, info['end']) - info['start']
                pieces.append((info['fragment'], piece_start, piece_end))
            if self.verbose:
                print(f"  [Selection] Found \"{format_text_preview(text)}\" in block {candidate}")
            return self._span_from_pieces(pieces)
        return SelectionSpan()

    def is_span_stale(self, span: SelectionSpan) -> bool:
        """
        True if a block touched by the span changed its text or its fragment
        layout since capture.

        A stale span must be re-derived (or located through its original text).
        """
        if span is None or span.is_empty():
            return True
        for block_id in span.block_ids:
            if not self.surface.has_block(block_id):
                return True
            expected = span.fingerprints.get(block_id)
            if expected is not None and expected != self.surface.block_fingerprint(block_id):
                return True
        for frag in span.fragments:
            handle = self.surface.fragment_by_id(frag.fragment_id)
            if handle is None or frag.end_offset > handle.length():
                return True
        return False

    def _collect_fragments_info(self, block_id: str) -> Tuple[List[Dict], str]:
        """
        Collect fragment info with absolute offsets within one block.

        Returns:
            (fragments_info, combined_text), where each info dict holds
            'fragment', 'text', 'start' and 'end'
        """
        fragments_info = []
        pos = 0
        for fragment in iter_fragments_in(self.surface.block_element(block_id)):
            value = fragment.value
            fragments_info.append({
                'fragment': fragment,
                'text': value,
                'start': pos,
                'end': pos + len(value),
            })
            pos += len(value)
        combined_text = ''.join(info['text'] for info in fragments_info)
        return fragments_info, combined_text

    def _span_from_pieces(self, pieces: List[Tuple[TextFragment, int, int]]) -> SelectionSpan:
        fragments = []
        texts = []
        for fragment, piece_start, piece_end in pieces:
            fragment_id = self.surface.fragment_id(fragment)
            if fragment_id is None:
                continue
            fragments.append(SpanFragment(fragment_id, piece_start, piece_end))
            texts.append(fragment.value[piece_start:piece_end])
        if not fragments:
            return SelectionSpan()

        start_block, _ = split_fragment_id(fragments[0].fragment_id)
        end_block, _ = split_fragment_id(fragments[-1].fragment_id)
        span = SelectionSpan(
            fragments=fragments,
            original_text=''.join(texts),
            start_block_id=start_block,
            end_block_id=end_block,
        )
        span.fingerprints = {
            block_id: self.surface.block_fingerprint(block_id)
            for block_id in span.block_ids
        }
        return span

    def span_block_offsets(self, span: Optional[SelectionSpan]) -> Optional[Tuple[str, int, str, int]]:
        """
        Block-relative position of a fresh span.

        Fragment ids index the tree as it is now; offsets into block text
        survive highlight teardown, which regroups fragments without changing text.

        Returns:
            (start_block_id, start_offset, end_block_id, end_offset), or None if
            the span is empty or stale
        """
        if not isinstance(span, SelectionSpan) or self.is_span_stale(span):
            return None
        first, last = span.fragments[0], span.fragments[-1]
        start = self._fragment_start(first.fragment_id)
        end = self._fragment_start(last.fragment_id)
        if start is None or end is None:
            return None
        return (span.start_block_id, start + first.start_offset,
                span.end_block_id, end + last.end_offset)

    def rebase_span(self, offsets: Tuple[str, int, str, int]) -> SelectionSpan:
        """Re-derive a span from span_block_offsets() against the current tree"""
        start_block, start_offset, end_block, end_offset = offsets
        return self.resolve_block_range(start_block, start_offset, end_offset, end_block)

    def _fragment_start(self, fragment_id: str) -> Optional[int]:
        block_id, index = split_fragment_id(fragment_id)
        fragments_info, _ = self._collect_fragments_info(block_id)
        if index >= len(fragments_info):
            return None
        return fragments_info[index]['start']

    @staticmethod
    def _index_of(fragments: List[TextFragment], fragment: TextFragment) -> Optional[int]:
        for index, candidate in enumerate(fragments):
            if candidate == fragment:
                return index
        return None
