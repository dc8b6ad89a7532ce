"""
This mixin class implements the replace/insert/append merge workflows that
splice parsed reply blocks into the report.
"""

from typing import List, Optional, Union

from .common import (
    MERGE_MODES,
    AnchorNotFound,
    Block,
    BlockSelection,
    EmptyReply,
    MergeResult,
    SelectionSpan,
)
from .text_tree import parse_inline
from utils import format_text_preview


class MergeMixin:
    """
    Expects ``self.surface``, ``self.session`` and ``self.verbose`` plus the
    selection and highlight mixins.
    """

    def apply_merge(self, mode: str,
                    selection: Optional[Union[SelectionSpan, BlockSelection]],
                    blocks: List[Block]) -> MergeResult:
        """
        Merge parsed blocks into the report.

        Args:
            mode: 'replace' | 'insert' | 'append'
            selection: Span or block selection (None uses the session selection)
            blocks: Parsed reply blocks

        Returns:
            MergeResult describing what changed. Runtime failures degrade to a
            no-op or a less precise edit and are reported here, never raised.

        Raises:
            ValueError: If mode is unknown
        """
        if mode not in MERGE_MODES:
            raise ValueError(f"Unknown merge mode: {mode!r} (expected one of {', '.join(MERGE_MODES)})")
        if selection is None:
            selection = self.session.selection

        if not blocks:
            reason = str(EmptyReply("Reply contained no content; nothing to apply"))
            if self.verbose:
                print(f"  [Merge] {reason}")
            return MergeResult(applied=False, mode=mode, message=reason)

        if selection is None or selection.is_empty():
            return MergeResult(applied=False, mode=mode, warning=True,
                               message="Nothing selected")

        if isinstance(selection, BlockSelection):
            result = self._merge_block_selection(mode, selection, blocks)
        else:
            result = self._merge_span(mode, selection, blocks)

        if result.applied:
            self.surface.request_layout_recalc()
            self.surface.mark_dirty(True)
            if self.verbose:
                print(f"  [Merge] {mode}: {len(result.inserted_block_ids)} inserted, "
                      f"{len(result.removed_block_ids)} removed")
        return result

    # ------------------------------------------------------------
    # Block selection
    # ------------------------------------------------------------

    def _merge_block_selection(self, mode: str, selection: BlockSelection,
                               blocks: List[Block]) -> MergeResult:
        selected = set(selection.block_ids)
        ordered = [block_id for block_id in self.surface.block_ids() if block_id in selected]
        if not ordered:
            return MergeResult(applied=False, mode=mode, warning=True,
                               message="Selected blocks are no longer in the report")

        self.teardown_highlight()

        if mode != 'replace':
            inserted = self._insert_blocks_after(ordered[-1], blocks)
            return MergeResult(applied=True, mode=mode, inserted_block_ids=inserted)

        all_ids = self.surface.block_ids()
        first_index = all_ids.index(ordered[0])
        predecessor = all_ids[first_index - 1] if first_index > 0 else None

        for block_id in ordered:
            self.surface.remove_block(block_id)

        temp_anchor = None
        if predecessor is None:
            # Inserting "after nothing" needs a live anchor at the top of the report
            temp_anchor = self.surface.insert_block_after(None, 'paragraph', '')
            predecessor = temp_anchor

        inserted = self._insert_blocks_after(predecessor, blocks)

        if temp_anchor is not None:
            self.surface.remove_block(temp_anchor)

        return MergeResult(applied=True, mode=mode, inserted_block_ids=inserted,
                           removed_block_ids=ordered)

    # ------------------------------------------------------------
    # Span selection
    # ------------------------------------------------------------

    def _merge_span(self, mode: str, span: SelectionSpan, blocks: List[Block]) -> MergeResult:
        if mode != 'replace':
            anchor = self._resolve_anchor_block(span.end_block_id)
            self.teardown_highlight()
            inserted = self._insert_blocks_after(anchor, blocks)
            return MergeResult(applied=True, mode=mode, inserted_block_ids=inserted)

        if self.annotations_locatable() and self._annotations_cover(span):
            return self._replace_annotations(mode, blocks)

        if not self.is_span_stale(span):
            annotations, _ = self.paint(span)
            if annotations:
                return self._replace_annotations(mode, blocks)

        return self._replace_by_search(mode, span, blocks)

    def _annotations_cover(self, span: SelectionSpan) -> bool:
        """True if the active annotations highlight exactly the span's characters"""
        annotations = self.session.annotations
        if annotations[0].block_id != span.start_block_id or annotations[-1].block_id != span.end_block_id:
            return False
        return ''.join(a.element.text or '' for a in annotations) == span.original_text

    def _replace_by_search(self, mode: str, span: SelectionSpan, blocks: List[Block]) -> MergeResult:
        """
        Fallback when the highlight cannot be located: find original_text in the
        anchor block and replace the first match, or append if it is gone.
        """
        if self.verbose:
            print(f"  [Fallback] Highlight not found, searching for "
                  f"\"{format_text_preview(span.original_text)}\"")
        self.teardown_highlight()

        anchor_block = span.start_block_id
        found = SelectionSpan()
        if anchor_block and self.surface.has_block(anchor_block):
            found = self.find_text_span(span.original_text, anchor_block)
        if not found.is_empty():
            annotations, _ = self.paint(found)
            if annotations:
                result = self._replace_annotations(mode, blocks)
                result.fallback = 'text_search'
                return result

        reason = str(AnchorNotFound(
            f"Original text not found in block {anchor_block}; appended instead"))
        print(f"  [Warning] {reason}")
        anchor = self._resolve_anchor_block(span.end_block_id, fallback=anchor_block)
        inserted = self._insert_blocks_after(anchor, blocks)
        return MergeResult(applied=True, mode=mode, inserted_block_ids=inserted,
                           fallback='append', warning=True, message=reason)

    def _replace_annotations(self, mode: str, blocks: List[Block]) -> MergeResult:
        """
        Replace the characters under the active annotations with blocks.

        A leading paragraph is spliced inline at the first annotation, so a
        single-paragraph reply keeps block boundaries intact. Remaining blocks
        go after the block holding the last annotation. Annotated text is then
        deleted and blocks left without text are removed, except the block
        that received the inline content.
        """
        annotations = list(self.session.annotations)
        first = annotations[0].element
        end_block = self.surface.block_of(annotations[-1].element)
        touched = []
        for annotation in annotations:
            block_id = self.surface.block_of(annotation.element)
            if block_id and block_id not in touched:
                touched.append(block_id)

        inline_block = blocks[0] if blocks[0].type == 'paragraph' else None
        remaining = blocks[1:] if inline_block is not None else list(blocks)

        if inline_block is not None:
            wrapper = parse_inline(inline_block.content, 'span')
            parent = first.getparent()
            parent.insert(parent.index(first), wrapper)
            wrapper.drop_tag()

        inserted = self._insert_blocks_after(end_block, remaining) if remaining else []

        parents = []
        for annotation in annotations:
            parent = annotation.element.getparent()
            if parent is None:
                continue
            if not any(parent is seen for seen in parents):
                parents.append(parent)
            annotation.element.drop_tree()
        for parent in parents:
            self.surface.normalize(parent)
        self.session.annotations = []

        removed = []
        for block_id in touched:
            if inline_block is not None and block_id == touched[0]:
                continue
            if not self.surface.has_block(block_id):
                continue
            if self.surface.get_block(block_id).type in ('table', 'divider'):
                continue
            if not self.surface.block_text(block_id).strip():
                self.surface.remove_block(block_id)
                removed.append(block_id)

        return MergeResult(applied=True, mode=mode, inserted_block_ids=inserted,
                           removed_block_ids=removed)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _resolve_anchor_block(self, block_id: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
        """Block to insert after; falls back to the last block (None for an empty report)"""
        for candidate in (block_id, fallback):
            if candidate and self.surface.has_block(candidate):
                return candidate
        ids = self.surface.block_ids()
        return ids[-1] if ids else None

    def _insert_blocks_after(self, anchor: Optional[str], blocks: List[Block]) -> List[str]:
        """Insert blocks in order after anchor (None inserts at the start); returns new ids"""
        inserted = []
        last = anchor
        for block in blocks:
            if block.type == 'table':
                last = self.surface.insert_table_after(last, block.rows)
            else:
                last = self.surface.insert_block_after(last, block.type, block.content)
            inserted.append(last)
        return inserted
