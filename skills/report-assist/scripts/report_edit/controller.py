"""Assist controller composed from the selection, highlight and merge mixins."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .common import (
    HEADING_TYPES,
    MERGE_MODES,
    Annotation,
    Block,
    BlockSelection,
    MergeResult,
    SelectionSpan,
    SelectionUnresolvable,
    StaleResult,
)
from .highlight import HighlightMixin
from .markdown_parser import parse_reply
from .merge import MergeMixin
from .selection import SelectionResolverMixin
from .text_tree import HtmlReportSurface
from utils import format_text_preview, get_default_audience, get_highlight_class, is_verbose_mode


@dataclass
class AssistSession:
    """The one active assist interaction"""
    selection: Optional[Union[SelectionSpan, BlockSelection]] = None
    annotations: List[Annotation] = field(default_factory=list)
    version: int = 0
    pending_version: Optional[int] = None    # Token of the request in flight
    mode: str = 'replace'
    question: Optional[str] = None


class AssistController(SelectionResolverMixin, HighlightMixin, MergeMixin):
    def __init__(self, surface: HtmlReportSurface, verbose: Optional[bool] = None,
                 highlight_class: Optional[str] = None, audience: Optional[str] = None):
        self.surface = surface
        self.verbose = is_verbose_mode() if verbose is None else verbose
        self.highlight_class = highlight_class or get_highlight_class()
        self.audience = audience or get_default_audience()

        self.session = AssistSession()

        # Annotation id management
        self.next_annotation_num = 1
        self._init_annotation_id()

    # ============================================================
    # Selection
    # ============================================================

    def _begin_selection(self, selection: Union[SelectionSpan, BlockSelection]):
        """Replace the session selection; anything in flight becomes stale"""
        selection = self.teardown_keeping(selection)
        self.session.selection = selection
        self.session.version += 1
        self.session.pending_version = None
        return selection

    def select_current(self) -> SelectionSpan:
        """
        Capture the surface's current pointer selection.

        Raises:
            SelectionUnresolvable: If nothing is selected or the anchors are dead
        """
        current = self.surface.current_selection_anchors()
        if current is None:
            raise SelectionUnresolvable("No selection on the report")
        start, end, container = current
        span = self.resolve_selection(start, end, container)
        if span.is_empty():
            raise SelectionUnresolvable("Selection no longer points at report text")
        return self._begin_selection(span)

    def select_text_range(self, block_id: str, start_offset: int, end_offset: int,
                          end_block_id: Optional[str] = None) -> SelectionSpan:
        """
        Select by character offsets within block text.

        Raises:
            SelectionUnresolvable: If a block is unknown or an offset is out of range
        """
        span = self.resolve_block_range(block_id, start_offset, end_offset, end_block_id)
        if span.is_empty():
            raise SelectionUnresolvable(
                f"Cannot resolve {block_id}[{start_offset}:{end_offset}]"
                + (f" to {end_block_id}" if end_block_id else ""))
        return self._begin_selection(span)

    def select_text(self, text: str, block_id: Optional[str] = None) -> SelectionSpan:
        """
        Select the first occurrence of text.

        Raises:
            SelectionUnresolvable: If the text is not found
        """
        span = self.find_text_span(text, block_id)
        if span.is_empty():
            raise SelectionUnresolvable(f"Text not found: \"{format_text_preview(text)}\"")
        return self._begin_selection(span)

    def select_blocks(self, block_ids: List[str]) -> BlockSelection:
        """
        Select whole blocks. Unknown ids are ignored.

        Raises:
            SelectionUnresolvable: If none of the ids names a block
        """
        known = [block_id for block_id in block_ids if self.surface.has_block(block_id)]
        if not known:
            raise SelectionUnresolvable(f"No such blocks: {', '.join(block_ids) or '(none)'}")
        if self.verbose and len(known) < len(block_ids):
            missing = [block_id for block_id in block_ids if block_id not in known]
            print(f"  [Warning] Ignoring unknown blocks: {', '.join(missing)}")
        return self._begin_selection(BlockSelection(known))

    def paint_selection(self) -> List[str]:
        """
        Highlight the session's span selection.

        The stored span is replaced by the bounding span over the annotations.
        Block selections are not painted.

        Returns:
            Ids of the new annotations

        Raises:
            SelectionUnresolvable: If the span changed since it was captured
        """
        selection = self.session.selection
        self.session.version += 1
        self.session.pending_version = None
        if not isinstance(selection, SelectionSpan):
            self.teardown_highlight()
            return []

        annotations, bounding = self.paint(selection)
        if not annotations:
            self.session.selection = None
            raise SelectionUnresolvable("Selection is stale; select the text again")
        self.session.selection = bounding
        return [annotation.annotation_id for annotation in annotations]

    # ============================================================
    # Requests
    # ============================================================

    def start_request(self, question: Optional[str] = None) -> int:
        """
        Mark a request to the generation service as in flight.

        Returns:
            Version token to hand back to complete_request()
        """
        self.session.question = question
        self.session.pending_version = self.session.version
        self.set_processing(True)
        if self.verbose:
            print(f"  [Request] Started with token {self.session.version}")
        return self.session.version

    def complete_request(self, token: int, reply: str, mode: Optional[str] = None) -> MergeResult:
        """
        Apply a reply if its request is still current.

        Args:
            token: Value returned by start_request()
            reply: Raw reply text
            mode: Merge mode (defaults to the session mode)

        Returns:
            MergeResult; a stale reply is dropped with applied=False
        """
        mode = mode or self.session.mode
        if token != self.session.version or token != self.session.pending_version:
            reason = str(StaleResult(
                f"Dropped reply for request {token}; current version is {self.session.version}"))
            if self.verbose:
                print(f"  [Request] {reason}")
            return MergeResult(applied=False, mode=mode, message=reason)

        self.session.pending_version = None
        self.set_processing(False)
        return self.apply_merge(mode, None, self.parse_reply(reply))

    def cancel(self):
        """Abandon the interaction: drop highlights and any request in flight"""
        self.teardown_highlight()
        self.surface.clear_selection()
        self.session.selection = None
        self.session.pending_version = None
        self.session.version += 1

    def set_mode(self, mode: str):
        if mode not in MERGE_MODES:
            raise ValueError(f"Unknown merge mode: {mode!r}")
        self.session.mode = mode

    # ============================================================
    # Parsing and merging
    # ============================================================

    def parse_reply(self, text: str) -> List[Block]:
        blocks = parse_reply(text)
        if self.verbose:
            print(f"  [Parse] {len(blocks)} block(s) from reply \"{format_text_preview(text)}\"")
        return blocks

    def apply_merge(self, mode: str,
                    selection: Optional[Union[SelectionSpan, BlockSelection]],
                    blocks: List[Block]) -> MergeResult:
        result = super().apply_merge(mode, selection, blocks)
        if result.applied and (selection is None or selection is self.session.selection):
            # The selection was consumed by the edit
            self.session.selection = None
            self.session.version += 1
        return result

    # ============================================================
    # Request context
    # ============================================================

    def build_request_context(self, question: Optional[str] = None) -> Dict[str, Any]:
        """
        Context sent to the generation service alongside the question.

        Returns:
            Dict with reportName, section, audience, selectedText and question
        """
        if question is None:
            question = self.session.question
        selection = self.session.selection
        start_block = None
        selected_text = ''
        if isinstance(selection, SelectionSpan) and not selection.is_empty():
            start_block = selection.start_block_id
            selected_text = selection.original_text
        elif isinstance(selection, BlockSelection) and not selection.is_empty():
            ordered = [b for b in self.surface.block_ids() if b in selection.block_ids]
            if ordered:
                start_block = ordered[0]
                selected_text = '\n'.join(self.surface.block_text(b) for b in ordered)

        return {
            'reportName': self.surface.report_name() or '',
            'section': self._section_of(start_block) if start_block else '',
            'audience': self.audience,
            'selectedText': selected_text,
            'question': question or '',
        }

    def _section_of(self, block_id: str) -> str:
        """Text of the nearest heading at or before block_id"""
        section = ''
        for candidate in self.surface.block_ids():
            block_type = self.surface.get_block(candidate).type
            if block_type in HEADING_TYPES:
                section = self.surface.block_text(candidate).strip()
            if candidate == block_id:
                break
        return section
