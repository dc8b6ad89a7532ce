#!/usr/bin/env python3
"""
ABOUTME: Unit tests for the highlight lifecycle (highlight.py)
"""

from _report_assist_helpers import (
    HtmlReportSurface, create_controller, create_sample_surface, highlight_count, report_text,
)


class TestPaint:
    """Tests for painting spans with annotations"""

    def test_paint_single_fragment(self):
        controller = create_controller(None, 'Alpha beta gamma')
        span = controller.resolve_block_range('b1', 6, 10)

        annotations, bounding = controller.paint(span)

        assert len(annotations) == 1
        assert annotations[0].text == 'beta'
        assert annotations[0].block_id == 'b1'
        assert annotations[0].element.get('class') == 'ai-selection-highlight'
        assert annotations[0].element.get('data-ai-highlight') == 'true'
        assert bounding.original_text == 'beta'
        assert controller.session.annotations == annotations

    def test_annotations_reproduce_original_text(self):
        """Concatenated annotation texts equal the span's original text"""
        controller = create_controller(create_sample_surface())
        span = controller.resolve_block_range('b2', 8, 6, end_block_id='b4')

        annotations, bounding = controller.paint(span)

        assert ''.join(a.text for a in annotations) == span.original_text
        assert bounding.original_text == span.original_text
        assert len(annotations) == 5
        assert highlight_count(controller.surface) == 5

    def test_paint_does_not_change_text(self):
        controller = create_controller(create_sample_surface())
        before = report_text(controller.surface)
        controller.paint(controller.resolve_block_range('b2', 3, 30))

        assert report_text(controller.surface) == before

    def test_repaint_replaces_previous_annotations(self):
        controller = create_controller(None, 'Alpha beta gamma', 'Second')
        controller.paint(controller.resolve_block_range('b1', 0, 5))

        annotations, _ = controller.paint(controller.resolve_block_range('b2', 0, 3))

        assert highlight_count(controller.surface) == 1
        assert annotations[0].text == 'Sec'
        assert controller.surface.get_block('b1').content == 'Alpha beta gamma'

    def test_stale_span_is_not_painted(self):
        controller = create_controller(None, 'Alpha beta gamma')
        span = controller.resolve_block_range('b1', 6, 10)
        controller.surface.set_block_content('b1', 'Alpha beta gamma delta')

        annotations, bounding = controller.paint(span)

        assert annotations == []
        assert bounding.is_empty()
        assert highlight_count(controller.surface) == 0

    def test_annotation_ids_continue_after_existing(self):
        surface = HtmlReportSurface.from_html(
            '<div data-report="true"><p>Hi <span data-annotation-id="a5">there</span></p></div>')
        controller = create_controller(surface)

        annotations, _ = controller.paint(controller.resolve_block_range('b1', 0, 2))

        assert annotations[0].annotation_id == 'a6'

    def test_bounding_span_is_fresh(self):
        controller = create_controller(create_sample_surface())
        _, bounding = controller.paint(controller.resolve_block_range('b2', 0, 12))

        assert not controller.is_span_stale(bounding)
        assert controller.annotations_locatable()


class TestTeardown:
    """Tests for removing annotations"""

    def test_round_trip_is_identical(self):
        controller = create_controller(None, 'Alpha beta gamma')
        html_before = controller.surface.to_html()
        controller.paint(controller.resolve_block_range('b1', 6, 10))

        removed = controller.teardown_highlight()

        assert removed == 1
        assert controller.surface.to_html() == html_before

    def test_round_trip_across_blocks(self):
        controller = create_controller(create_sample_surface())
        text_before = report_text(controller.surface)
        content_before = [b.content for b in controller.surface.blocks()]
        controller.paint(controller.resolve_block_range('b2', 8, 4, end_block_id='b5'))

        controller.teardown_highlight()

        assert report_text(controller.surface) == text_before
        assert [b.content for b in controller.surface.blocks()] == content_before
        assert highlight_count(controller.surface) == 0

    def test_second_teardown_is_noop(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.paint(controller.resolve_block_range('b1', 6, 10))
        controller.teardown_highlight()
        html_after_first = controller.surface.to_html()

        assert controller.teardown_highlight() == 0
        assert controller.surface.to_html() == html_after_first

    def test_stray_highlights_removed(self):
        surface = HtmlReportSurface.from_html(
            '<div data-report="true"><p>Hi <span class="ai-selection-highlight" '
            'data-ai-highlight="true">there</span> friend</p></div>')
        controller = create_controller(surface)

        assert controller.teardown_highlight() == 1
        assert surface.block_text('b1') == 'Hi there friend'
        assert surface.get_block('b1').content == 'Hi there friend'

    def test_teardown_after_block_removed(self):
        """Annotations in a removed block are simply forgotten"""
        controller = create_controller(None, 'Alpha', 'Beta')
        controller.paint(controller.resolve_block_range('b1', 0, 5))
        controller.surface.remove_block('b1')

        assert controller.teardown_highlight() == 0
        assert controller.session.annotations == []


class TestProcessingState:
    """Tests for set_processing"""

    def test_toggle(self):
        controller = create_controller(None, 'Alpha beta gamma')
        annotations, _ = controller.paint(controller.resolve_block_range('b1', 6, 10))
        elem = annotations[0].element

        controller.set_processing(True)
        assert annotations[0].visual_state == 'processing'
        assert elem.get('data-state') == 'processing'
        assert 'processing' in elem.get('class').split()

        controller.set_processing(False)
        assert annotations[0].visual_state == 'idle'
        assert elem.get('data-state') == 'idle'
        assert elem.get('class') == 'ai-selection-highlight'

    def test_no_annotations(self):
        controller = create_controller(None, 'Alpha')
        controller.set_processing(True)

        assert highlight_count(controller.surface) == 0


class TestLocatable:
    """Tests for annotations_locatable"""

    def test_direct_edit_invalidates(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.paint(controller.resolve_block_range('b1', 6, 10))
        assert controller.annotations_locatable()

        controller.surface.set_block_content('b1', 'Rewritten')

        assert not controller.annotations_locatable()

    def test_nothing_painted(self):
        assert not create_controller(None, 'Alpha').annotations_locatable()
