"""
This mixin class implements the highlight lifecycle: painting a span with
annotation elements, toggling their processing state and tearing them down.
"""

from typing import List, Tuple

from lxml import html as lxml_html

from .common import (
    ANNOTATION_ID_ATTR,
    HIGHLIGHT_ATTR,
    STATE_ATTR,
    Annotation,
    SelectionSpan,
    SpanFragment,
)
from .text_tree import TextFragment


class HighlightMixin:
    """
    Expects ``self.surface``, ``self.session`` (with ``selection`` and
    ``annotations``), ``self.highlight_class`` and ``self.verbose`` plus the
    selection mixin.
    """

    def _init_annotation_id(self):
        """Initialize next annotation number by scanning highlights left in the document"""
        max_id = 0
        for elem in self.surface.root.xpath(f'.//*[@{ANNOTATION_ID_ATTR}]'):
            value = elem.get(ANNOTATION_ID_ATTR, '')
            if value.startswith('a') and value[1:].isdigit():
                max_id = max(max_id, int(value[1:]))
        self.next_annotation_num = max_id + 1

    def _get_next_annotation_id(self) -> str:
        annotation_id = f"a{self.next_annotation_num}"
        self.next_annotation_num += 1
        return annotation_id

    def _make_annotation_element(self, annotation_id: str):
        wrapper = lxml_html.Element('span')
        wrapper.set('class', self.highlight_class)
        wrapper.set(HIGHLIGHT_ATTR, 'true')
        wrapper.set(ANNOTATION_ID_ATTR, annotation_id)
        wrapper.set(STATE_ATTR, 'idle')
        return wrapper

    def paint(self, span: SelectionSpan) -> Tuple[List[Annotation], SelectionSpan]:
        """
        Wrap every fragment of span in an annotation element.

        All fragment handles are resolved before the tree is touched: ids are
        positional and wrapping one fragment renumbers the ones after it.
        Existing annotations are torn down first and a fresh span is re-derived
        against the unwrapped tree.

        Args:
            span: Span to paint; must not be stale

        Returns:
            (annotations, bounding_span). The bounding span describes the same
            characters through the annotation texts. Both are empty if the span
            is empty or stale.
        """
        span = self.teardown_keeping(span)
        if span is None or span.is_empty():
            return [], SelectionSpan()

        for block_id, expected in span.fingerprints.items():
            if not self.surface.has_block(block_id) or self.surface.block_fingerprint(block_id) != expected:
                if self.verbose:
                    print(f"  [Highlight] Span is stale: block {block_id} changed since capture")
                return [], SelectionSpan()

        resolved: List[Tuple[SpanFragment, TextFragment]] = []
        for frag in span.fragments:
            handle = self.surface.fragment_by_id(frag.fragment_id)
            if handle is None or frag.end_offset > handle.length() or frag.start_offset < 0:
                if self.verbose:
                    print(f"  [Highlight] Fragment {frag.fragment_id} no longer resolves")
                return [], SelectionSpan()
            resolved.append((frag, handle))

        annotations: List[Annotation] = []
        for frag, handle in resolved:
            if frag.length == 0:
                continue
            annotation_id = self._get_next_annotation_id()
            wrapper = handle.wrap(frag.start_offset, frag.end_offset,
                                  self._make_annotation_element(annotation_id))
            block_id = self.surface.block_of(wrapper)
            annotations.append(Annotation(
                annotation_id=annotation_id,
                fragment_ref=frag.fragment_id,
                element=wrapper,
                block_id=block_id,
                block_revision=self.surface.block_revision(block_id),
            ))

        self.session.annotations = annotations
        if not annotations:
            return [], SelectionSpan()

        bounding = self._span_from_pieces([
            (TextFragment(annotation.element, 'text'), 0, len(annotation.element.text or ''))
            for annotation in annotations
        ])
        if self.verbose:
            print(f"  [Highlight] Painted {len(annotations)} fragment(s)")
        return annotations, bounding

    def set_processing(self, processing: bool):
        """Toggle the visual state of all active annotations (presentation only)"""
        state = 'processing' if processing else 'idle'
        for annotation in self.session.annotations:
            annotation.visual_state = state
            elem = annotation.element
            if elem is None:
                continue
            elem.set(STATE_ATTR, state)
            classes = [c for c in (elem.get('class') or '').split() if c != 'processing']
            if processing:
                classes.append('processing')
            elem.set('class', ' '.join(classes))

    def teardown_highlight(self) -> int:
        """
        Unwrap every annotation and normalize the touched parents.

        Stray highlight elements still in the document (e.g. from a previous
        session) are unwrapped as well; annotations no longer in the document
        are dropped. A fresh session span is re-derived against the unwrapped
        tree. Safe to call with nothing active.

        Returns:
            Number of annotation elements removed
        """
        offsets = self.span_block_offsets(self.session.selection)
        elements = [a.element for a in self.session.annotations if a.element is not None]
        for stray in self.surface.root.xpath(f'.//*[@{HIGHLIGHT_ATTR}]'):
            if not any(stray is elem for elem in elements):
                elements.append(stray)

        parents = []
        removed = 0
        for elem in elements:
            parent = elem.getparent()
            if parent is None or not self.surface.is_attached(parent):
                # Removed along with its block
                continue
            if not any(parent is seen for seen in parents):
                parents.append(parent)
            elem.drop_tag()
            removed += 1

        for parent in parents:
            self.surface.normalize(parent)

        self.session.annotations = []
        if removed and offsets is not None:
            # Fragment ids of the old span index the painted tree
            self.session.selection = self.rebase_span(offsets)
        if removed and self.verbose:
            print(f"  [Highlight] Removed {removed} highlight(s)")
        return removed

    def teardown_keeping(self, span):
        """
        Tear down highlights and return span re-derived against the result.

        Stale or block-level selections come back unchanged.
        """
        offsets = self.span_block_offsets(span)
        if self.teardown_highlight() and offsets is not None:
            return self.rebase_span(offsets)
        return span

    def annotations_locatable(self) -> bool:
        """
        True if every active annotation is still in the document, unedited.

        A direct edit of a block bumps its revision; annotations painted
        before the edit no longer describe the selected characters.
        """
        if not self.session.annotations:
            return False
        for annotation in self.session.annotations:
            elem = annotation.element
            if elem is None or elem.getparent() is None or not self.surface.is_attached(elem):
                return False
            block_id = self.surface.block_of(elem)
            if block_id is None or block_id != annotation.block_id:
                return False
            if self.surface.block_revision(block_id) != annotation.block_revision:
                return False
        return True
