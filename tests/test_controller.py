#!/usr/bin/env python3
"""
ABOUTME: Unit tests for the assist controller (controller.py)
"""

import pytest

from _report_assist_helpers import (
    AssistController, Block, BlockSelection, HtmlReportSurface, SelectionSpan,
    SelectionUnresolvable, create_controller, create_sample_surface, create_surface,
    highlight_count, parse_reply,
)


class TestRequestVersions:
    """Tests for version tokens and stale results"""

    def test_current_request_is_applied(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request("Make it shorter")

        result = controller.complete_request(token, "delta")

        assert result.applied
        assert controller.surface.block_text('b1') == 'Alpha delta gamma'
        assert controller.session.selection is None

    def test_repaint_makes_pending_result_stale(self):
        controller = create_controller(None, 'Alpha beta gamma', 'Second para')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request()

        controller.select_text('Second')
        controller.paint_selection()
        result = controller.complete_request(token, "delta")

        assert not result.applied
        assert controller.surface.block_text('b1') == 'Alpha beta gamma'
        assert controller.surface.block_text('b2') == 'Second para'
        assert highlight_count(controller.surface) == 1

    def test_repaint_same_selection_makes_pending_result_stale(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request()

        controller.paint_selection()

        assert not controller.complete_request(token, "delta").applied

    def test_token_is_single_use(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request()
        controller.complete_request(token, "delta")

        result = controller.complete_request(token, "epsilon")

        assert not result.applied
        assert controller.surface.block_text('b1') == 'Alpha delta gamma'

    def test_unknown_token(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')

        assert not controller.complete_request(99, "delta").applied

    def test_cancel(self):
        surface = create_surface('Alpha beta gamma')
        controller = create_controller(surface)
        surface.select(surface.anchor_at('b1', 6), surface.anchor_at('b1', 10, prefer_end=True))
        controller.select_current()
        controller.paint_selection()
        token = controller.start_request()

        controller.cancel()

        assert not controller.complete_request(token, "delta").applied
        assert highlight_count(surface) == 0
        assert controller.session.selection is None
        assert surface.current_selection_anchors() is None
        assert surface.block_text('b1') == 'Alpha beta gamma'

    def test_processing_state_follows_request(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.paint_selection()

        controller.start_request()
        assert [a.visual_state for a in controller.session.annotations] == ['processing']

    def test_empty_reply_leaves_highlight_idle(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request()

        result = controller.complete_request(token, "")

        assert not result.applied
        assert highlight_count(controller.surface) == 1
        assert controller.session.annotations[0].element.get('data-state') == 'idle'

    def test_mode_defaults_to_session_mode(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.set_mode('insert')
        controller.select_text('beta')
        controller.paint_selection()
        token = controller.start_request()

        result = controller.complete_request(token, "Added")

        assert result.mode == 'insert'
        assert [controller.surface.block_text(b) for b in controller.surface.block_ids()] == [
            'Alpha beta gamma', 'Added']

    def test_set_mode_rejects_unknown(self):
        with pytest.raises(ValueError):
            create_controller(None, 'x').set_mode('rewrite')

    def test_scenario_through_request(self):
        surface = HtmlReportSurface.from_blocks([Block('paragraph', '')])
        controller = create_controller(surface)
        controller.select_blocks(['b1'])
        token = controller.start_request()

        controller.complete_request(token, "**Critical** risk.\n\n- Mitigate\n- Monitor", 'replace')

        assert surface.blocks() == [
            Block('paragraph', '<b>Critical</b> risk.'),
            Block('bullet', 'Mitigate'),
            Block('bullet', 'Monitor'),
        ]


class TestPaintSelection:
    """Tests for paint_selection"""

    def test_returns_annotation_ids_and_bounding_span(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')

        ids = controller.paint_selection()

        assert ids == ['a1']
        assert isinstance(controller.session.selection, SelectionSpan)
        assert controller.session.selection.original_text == 'beta'

    def test_block_selection_is_not_painted(self):
        controller = create_controller(None, 'One')
        controller.select_blocks(['b1'])
        version = controller.session.version

        assert controller.paint_selection() == []
        assert controller.session.version == version + 1
        assert isinstance(controller.session.selection, BlockSelection)

    def test_replace_after_teardown_hits_selected_text(self):
        controller = create_controller(None, 'Hello <b>big</b> world')
        controller.select_text_range('b1', 3, 5)
        controller.paint_selection()
        controller.teardown_highlight()

        result = controller.apply_merge('replace', None, parse_reply('XY'))

        assert result.applied
        assert result.fallback is None
        assert controller.surface.block_text('b1') == 'HelXY big world'

    def test_select_while_painted_in_same_block(self):
        controller = create_controller(None, 'Hello world')
        controller.select_text('ll')
        controller.paint_selection()

        span = controller.select_text('world')

        assert span.original_text == 'world'
        assert controller.paint_selection() == ['a2']
        controller.apply_merge('replace', None, parse_reply('there'))
        assert controller.surface.block_text('b1') == 'Hello there'

    def test_stale_selection_raises(self):
        controller = create_controller(None, 'Alpha beta gamma')
        controller.select_text('beta')
        controller.surface.set_block_content('b1', 'Changed text')

        with pytest.raises(SelectionUnresolvable):
            controller.paint_selection()
        assert controller.session.selection is None


class TestRequestContext:
    """Tests for build_request_context"""

    def test_span_context(self):
        controller = AssistController(create_sample_surface(), verbose=False, audience='board')
        controller.select_text('Second source')

        context = controller.build_request_context("Rewrite this")

        assert context == {
            'reportName': 'Q3 Risk Review',
            'section': 'Mitigation',
            'audience': 'board',
            'selectedText': 'Second source',
            'question': 'Rewrite this',
        }

    def test_block_selection_context(self):
        controller = AssistController(create_sample_surface(), verbose=False, audience='board')
        controller.select_blocks(['b6', 'b5'])

        context = controller.build_request_context()

        assert context['selectedText'] == 'Audit vendors\nTrack lead times'
        assert context['section'] == 'Mitigation'
        assert context['question'] == ''

    def test_heading_is_its_own_section(self):
        controller = create_controller(create_sample_surface())
        controller.select_blocks(['b1'])

        assert controller.build_request_context()['section'] == 'Overview'

    def test_question_from_request(self):
        controller = create_controller(None, 'Alpha')
        controller.select_blocks(['b1'])
        controller.start_request("Expand")

        context = controller.build_request_context()

        assert context['question'] == 'Expand'
        assert context['section'] == ''
        assert context['reportName'] == ''

    def test_default_audience_from_environment(self, monkeypatch):
        monkeypatch.setenv('REPORT_ASSIST_AUDIENCE', 'auditors')
        controller = AssistController(create_surface('x'), verbose=False)

        assert controller.build_request_context()['audience'] == 'auditors'


class TestConfiguration:
    """Tests for environment-driven controller settings"""

    def test_highlight_class_from_environment(self, monkeypatch):
        monkeypatch.setenv('REPORT_ASSIST_HIGHLIGHT_CLASS', 'assist-mark')
        controller = AssistController(create_surface('Alpha beta'), verbose=False)
        controller.select_text('beta')
        controller.paint_selection()

        elem = controller.session.annotations[0].element
        assert elem.get('class') == 'assist-mark'
        assert controller.teardown_highlight() == 1

    def test_verbose_from_environment(self, monkeypatch, capsys):
        monkeypatch.setenv('REPORT_ASSIST_VERBOSE', 'true')
        controller = AssistController(create_surface('Alpha beta'))
        controller.select_text('beta')
        controller.paint_selection()

        assert controller.verbose
        assert '[Highlight] Painted 1 fragment(s)' in capsys.readouterr().out
