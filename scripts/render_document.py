from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from mzansi_books.config import configure_logging, load_config
from mzansi_books.errors import RenderFailure
from mzansi_books.services.print_service import render_document


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Render a quotation or invoice JSON export to PDF."
    )
    parser.add_argument(
        "source",
        help='JSON file with "document", "company" and optional "clients" keys.',
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory for the PDF (defaults to PDF_OUTPUT_DIR or the current directory).",
    )
    parser.add_argument(
        "--draft",
        action="store_true",
        help="Do not assign a number to unnumbered documents.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(config.log_level)

    try:
        payload = json.loads(Path(args.source).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"Could not read {args.source}: {exc}", file=sys.stderr)
        return 1

    output_dir = args.output_dir or config.pdf_output_dir or "."
    try:
        result = render_document(
            payload.get("document") or {},
            payload.get("company") or {},
            clients=payload.get("clients") or {},
            config=config,
            assign=not args.draft,
            save_to=output_dir,
        )
    except RenderFailure as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"{result.filename}: {result.page_count} page(s) written to {result.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
