#!/usr/bin/env python3
"""
ABOUTME: Applies a generation-service reply to a report selection from the command line
ABOUTME: Loads HTML/DOCX/JSON reports, merges the reply and writes the edited report
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from report_edit.common import MERGE_MODES, MergeResult, SelectionUnresolvable
from report_edit.controller import AssistController
from report_edit.docx_io import (
    blocks_from_json,
    blocks_to_json,
    load_blocks_from_docx,
    save_blocks_to_docx,
)
from report_edit.text_tree import HtmlReportSurface
from utils import format_text_preview

OUTPUT_FORMATS = ('html', 'docx', 'json')


def load_report(path: Path, verbose: bool = False) -> HtmlReportSurface:
    """
    Load a report file into a surface.

    Raises:
        ValueError: If the file type is not supported
    """
    suffix = path.suffix.lower()
    if suffix in ('.html', '.htm'):
        return HtmlReportSurface.from_html(path.read_text(encoding='utf-8'), verbose=verbose)
    if suffix == '.docx':
        return HtmlReportSurface.from_blocks(load_blocks_from_docx(path),
                                             report_name=path.stem, verbose=verbose)
    if suffix == '.json':
        return HtmlReportSurface.from_blocks(blocks_from_json(path.read_text(encoding='utf-8')),
                                             report_name=path.stem, verbose=verbose)
    raise ValueError(f"Unsupported report type: {path.suffix or '(none)'} (expected .html, .docx or .json)")


def read_reply(source: str) -> str:
    """Read the reply text from a file, or from stdin for '-'"""
    if source == '-':
        return sys.stdin.read()
    return Path(source).read_text(encoding='utf-8')


def output_format_for(path: Path, requested: Optional[str] = None) -> str:
    if requested:
        return requested
    suffix = path.suffix.lower()
    if suffix == '.docx':
        return 'docx'
    if suffix == '.json':
        return 'json'
    return 'html'


def save_report(surface: HtmlReportSurface, path: Path, fmt: str) -> Path:
    if fmt == 'docx':
        return save_blocks_to_docx(surface.blocks(), path)
    if fmt == 'json':
        path.write_text(blocks_to_json(surface.blocks()) + '\n', encoding='utf-8')
        return path
    path.write_text(surface.to_html(), encoding='utf-8')
    return path


def select_from_args(controller: AssistController, args) -> str:
    """
    Apply the selection options to the controller.

    Returns:
        Short description of the selection for the summary

    Raises:
        SelectionUnresolvable: If the options select nothing
    """
    if args.blocks:
        block_ids = [b.strip() for b in args.blocks.split(',') if b.strip()]
        selection = controller.select_blocks(block_ids)
        return f"blocks {', '.join(selection.block_ids)}"

    if args.text:
        span = controller.select_text(args.text, args.block)
        controller.paint_selection()
        return f"text \"{format_text_preview(span.original_text)}\""

    if args.block:
        if not controller.surface.has_block(args.block):
            raise SelectionUnresolvable(f"No such block: {args.block}")
        start = args.start if args.start is not None else 0
        end = args.end if args.end is not None else len(controller.surface.block_text(args.block))
        span = controller.select_text_range(args.block, start, end)
        controller.paint_selection()
        return f"{args.block}[{start}:{end}] \"{format_text_preview(span.original_text)}\""

    if args.mode == 'replace':
        raise SelectionUnresolvable("Replace needs a selection (--block, --text or --blocks)")
    block_ids = controller.surface.block_ids()
    if not block_ids:
        raise SelectionUnresolvable("Report has no blocks to insert after")
    controller.select_blocks([block_ids[-1]])
    return f"end of report ({block_ids[-1]})"


def print_result(result: MergeResult, before: int, after: int):
    print("-" * 50)
    print(f"Blocks: {before} -> {after}")
    if result.inserted_block_ids:
        print(f"Inserted: {', '.join(result.inserted_block_ids)}")
    if result.removed_block_ids:
        print(f"Removed: {', '.join(result.removed_block_ids)}")
    if result.fallback:
        print(f"Fallback: {result.fallback}")
    status = 'applied' if result.applied else 'not applied'
    if result.warning:
        status += ' (with warning)'
    print(f"Completed: {result.mode} {status}" + (f" - {result.message}" if result.message else ""))


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Apply a generation-service reply to a report selection"
    )
    parser.add_argument('report', help='Report file (.html, .docx or .json)')
    parser.add_argument('reply', help="Reply text file ('-' reads stdin)")
    parser.add_argument('-o', '--output', help='Output file path (default: <report>_edited)')
    parser.add_argument('--mode', choices=MERGE_MODES, default='replace',
                        help='Merge mode (default: replace)')
    parser.add_argument('--block', help='Block id holding the selection')
    parser.add_argument('--start', type=int, help='Start offset within --block text')
    parser.add_argument('--end', type=int, help='End offset within --block text')
    parser.add_argument('--text', help='Select the first occurrence of this text')
    parser.add_argument('--blocks', help='Comma-separated block ids to select as whole blocks')
    parser.add_argument('--format', choices=OUTPUT_FORMATS,
                        help='Output format (default: from output suffix)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Validate only, do not save')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')

    args = parser.parse_args()

    try:
        report_path = Path(args.report)
        output_path = Path(args.output) if args.output else \
            report_path.with_stem(report_path.stem + '_edited')
        fmt = output_format_for(output_path, args.format)

        verbose = True if args.verbose else None
        surface = load_report(report_path, verbose=bool(args.verbose))
        controller = AssistController(surface, verbose=verbose)
        reply = read_reply(args.reply)

        print(f"Source file: {report_path}")
        print(f"Output to: {output_path} ({fmt})")
        if controller.verbose:
            print("-" * 50)

        try:
            described = select_from_args(controller, args)
        except SelectionUnresolvable as e:
            print(f"Error: nothing selected: {e}", file=sys.stderr)
            return 2
        print(f"Selection: {described}")

        before = len(surface.block_ids())
        token = controller.start_request()
        result = controller.complete_request(token, reply, args.mode)
        print_result(result, before, len(surface.block_ids()))

        # The session ends here; never save highlight markup
        controller.teardown_highlight()

        if args.dry_run:
            print("Dry run: output not written")
        else:
            save_report(surface, output_path, fmt)
            print(f"Saved to: {output_path}")
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
