#!/usr/bin/env python3
"""
ABOUTME: Shared helpers for report assist tests.
"""

import sys
import importlib
from pathlib import Path

# Add skills/report-assist/scripts directory to path (must be before import)
_scripts_dir = Path(__file__).parent.parent / 'skills' / 'report-assist' / 'scripts'
sys.path.insert(0, str(_scripts_dir))

_common_module = importlib.import_module("report_edit.common")
Block = _common_module.Block
BlockSelection = _common_module.BlockSelection
SelectionSpan = _common_module.SelectionSpan
SpanFragment = _common_module.SpanFragment
MergeResult = _common_module.MergeResult
SelectionUnresolvable = _common_module.SelectionUnresolvable
HIGHLIGHT_ATTR = _common_module.HIGHLIGHT_ATTR

_tree_module = importlib.import_module("report_edit.text_tree")
HtmlReportSurface = _tree_module.HtmlReportSurface
TextFragment = _tree_module.TextFragment
Anchor = _tree_module.Anchor

_controller_module = importlib.import_module("report_edit.controller")
AssistController = _controller_module.AssistController

parse_reply = importlib.import_module("report_edit.markdown_parser").parse_reply


# ============================================================
# Fixture Builders
# ============================================================

SAMPLE_REPORT_HTML = (
    '<div class="report" data-report="true" data-report-name="Q3 Risk Review">'
    '<h1>Overview</h1>'
    '<p>Supply chain risk is <b>elevated</b> this quarter.</p>'
    '<h2>Mitigation</h2>'
    '<p>Second source the critical parts.</p>'
    '<ul><li>Audit vendors</li><li>Track lead times</li></ul>'
    '</div>'
)


def create_surface(*paragraphs: str, report_name: str = None) -> HtmlReportSurface:
    """
    Build a report surface with one paragraph block per argument.

    Args:
        paragraphs: Inline content of each paragraph

    Returns:
        HtmlReportSurface with blocks b1, b2, ...
    """
    blocks = [Block('paragraph', content) for content in paragraphs]
    return HtmlReportSurface.from_blocks(blocks, report_name=report_name)


def create_sample_surface() -> HtmlReportSurface:
    """Surface loaded from SAMPLE_REPORT_HTML (blocks b1..b6)"""
    return HtmlReportSurface.from_html(SAMPLE_REPORT_HTML)


def create_controller(surface: HtmlReportSurface = None, *paragraphs: str) -> AssistController:
    """Controller over surface, or over a fresh surface built from paragraphs"""
    if surface is None:
        surface = create_surface(*paragraphs)
    return AssistController(surface, verbose=False)


def report_text(surface: HtmlReportSurface) -> str:
    """Full report text (block texts joined by newlines)"""
    return '\n'.join(surface.block_text(block_id) for block_id in surface.block_ids())


def highlight_count(surface: HtmlReportSurface) -> int:
    return len(surface.root.xpath(f'.//*[@{HIGHLIGHT_ATTR}]'))
