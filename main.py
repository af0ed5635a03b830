from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from laudo.config import get_settings
from laudo.report.export import FORMATS, ReportExportError, build_report_filename, export_report
from laudo.storage import read_json, reports_root, write_bytes_atomic
from laudo.types import CaseData, CaseValidationError, ReportType


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _load_case(path_arg: str) -> CaseData:
    path = Path(path_arg).expanduser().resolve()
    if not path.exists() or not path.is_file():
        raise CaseValidationError(f'Case file not found: {path}')
    return CaseData.from_payload(read_json(path))


def cmd_render(args: argparse.Namespace) -> int:
    try:
        case = _load_case(args.input)
    except CaseValidationError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2

    out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else reports_root()
    formats = list(FORMATS) if args.format == 'both' else [args.format]

    written: list[dict] = []
    for fmt in formats:
        try:
            result = asyncio.run(export_report(case, fmt, report_type=args.report_type))
        except ReportExportError as exc:
            _print_json({'status': 'error', 'format': fmt, 'message': str(exc), 'written': written})
            return 1
        target = out_dir / result.filename
        write_bytes_atomic(target, result.content)
        written.append(
            {
                'format': fmt,
                'path': str(target),
                'bytes': len(result.content),
                'media_type': result.media_type,
            }
        )

    _print_json({'status': 'ok', 'written': written})
    return 0


def cmd_filename(args: argparse.Namespace) -> int:
    try:
        case = _load_case(args.input)
    except CaseValidationError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2
    print(build_report_filename(case, args.format))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Laudo pericial DOCX/PDF renderer')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Render a case into DOCX and/or PDF')
    render.add_argument('--input', required=True, help='Path to the case JSON file')
    render.add_argument('--format', choices=[*FORMATS, 'both'], default='both')
    render.add_argument('--out-dir', required=False, help='Output directory (defaults to DATA_DIR/reports)')
    render.add_argument(
        '--report-type',
        choices=[item.value for item in ReportType],
        required=False,
        help='Override the report type stored in the case',
    )
    render.set_defaults(func=cmd_render)

    filename = sub.add_parser('filename', help='Print the download filename for a case')
    filename.add_argument('--input', required=True, help='Path to the case JSON file')
    filename.add_argument('--format', choices=list(FORMATS), default='pdf')
    filename.set_defaults(func=cmd_filename)

    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
