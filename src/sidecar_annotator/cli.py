"""
Sidecar Annotator - Command Line Interface

Inspect, back up, restore and re-anchor the sidecar annotations of a document.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .bundle import read_bundle_json
from .config import CONFIG
from .document.fitz_text import FitzPageText
from .document.identity import resolve_identity
from .errors import BundleFormatError
from .models import AnnotationKind
from .session import AnnotationSession
from .storage.store import SqlAnnotationStore
from .utils.file_utils import create_backup, ensure_directory_exists

logger = logging.getLogger(__name__)


def _open_store(db_path: str) -> SqlAnnotationStore:
    path = Path(db_path)
    ensure_directory_exists(path.parent)
    return SqlAnnotationStore(f"sqlite:///{path}")


def _resolve_doc(args) -> Tuple[Optional[str], Optional[str]]:
    """(doc_id, legacy_doc_id) from --doc or --doc-id."""
    if args.doc_id:
        return args.doc_id, None
    if args.doc:
        if not Path(args.doc).exists():
            print(f"Error: document does not exist: {args.doc}")
            return None, None
        identity = resolve_identity(args.doc)
        return identity.doc_id, identity.legacy_doc_id
    print("Error: one of --doc or --doc-id is required")
    return None, None


def cmd_list(args, store) -> int:
    doc_id, legacy = _resolve_doc(args)
    if doc_id is None:
        return 1
    AnnotationSession(doc_id, store, legacy_doc_id=legacy)

    print(f"Document: {doc_id}")
    layouts = set()
    for kind in AnnotationKind:
        rows = store.list_all(doc_id, kind)
        layouts.update(row.layout_profile_id for row in rows)
        print(f"  {kind.value:<10} {len(rows)}")
    if args.verbose and layouts:
        print("Layouts:")
        for layout in sorted(layouts, key=lambda value: value or ""):
            print(f"  {layout or '(layout-independent)'}")
    return 0


def cmd_export(args, store) -> int:
    doc_id, legacy = _resolve_doc(args)
    if doc_id is None:
        return 1
    session = AnnotationSession(doc_id, store, legacy_doc_id=legacy)
    with open(args.output, "wb") as f:
        session.export_bundle(f)
    print(f"Exported annotations of {doc_id} to {args.output}")
    return 0


def cmd_import(args, store) -> int:
    doc_id, legacy = _resolve_doc(args)
    if doc_id is None:
        return 1
    bundle_path = Path(args.bundle)
    if not bundle_path.exists():
        print(f"Error: bundle does not exist: {args.bundle}")
        return 1

    try:
        with open(bundle_path, "rb") as f:
            bundle = read_bundle_json(f)
    except BundleFormatError as e:
        print(f"Error: {e}")
        return 1

    if args.backup:
        create_backup(args.db)

    session = AnnotationSession(doc_id, store, legacy_doc_id=legacy)
    stats = session.import_bundle(bundle)
    print(f"Imported {stats.ink_count} ink stroke(s), {stats.highlight_count} highlight(s), "
          f"{stats.note_count} note(s) into {doc_id}")
    skipped = sum(bundle.skipped.values())
    if skipped:
        print(f"Skipped {skipped} malformed row(s)")
    return 0


def cmd_reanchor(args, store) -> int:
    if not args.doc:
        print("Error: reanchor needs --doc to read page text")
        return 1
    doc_id, legacy = _resolve_doc(args)
    if doc_id is None:
        return 1

    with FitzPageText.open(args.doc) as page_text:
        layout = page_text.apply_layout(args.width, args.height, args.font_size)
        if layout is None:
            print("Error: document has a fixed layout; nothing to re-anchor")
            return 1
        session = AnnotationSession(doc_id, store, layout_profile_id=layout, legacy_doc_id=legacy)
        report = session.reanchor_highlights_for_current_layout(page_text)

    print(f"Layout: {layout}")
    print(f"Re-anchored {report.updated} highlight(s); "
          f"{report.rejected} left in their previous layout, {report.skipped} without quote")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sidecar-annotator", description="Sidecar Annotator CLI")
    parser.add_argument("--db", default=str(CONFIG.database_path), help="Path to the annotation database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    doc_options = argparse.ArgumentParser(add_help=False)
    doc_options.add_argument("--doc", help="Path to the document (its content id is used)")
    doc_options.add_argument("--doc-id", help="Explicit document id")

    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", parents=[doc_options], help="Count annotations of a document")
    p_list.set_defaults(func=cmd_list)

    p_export = sub.add_parser("export", parents=[doc_options], help="Export annotations as a JSON bundle")
    p_export.add_argument("--output", "-o", required=True, help="Bundle file to write")
    p_export.set_defaults(func=cmd_export)

    p_import = sub.add_parser("import", parents=[doc_options], help="Import a JSON bundle into a document")
    p_import.add_argument("bundle", help="Bundle file to read")
    p_import.add_argument("--backup", action="store_true", help="Back up the database before importing")
    p_import.set_defaults(func=cmd_import)

    p_reanchor = sub.add_parser("reanchor", parents=[doc_options],
                                help="Lay out a reflowable document and re-anchor its highlights")
    p_reanchor.add_argument("--width", type=float, default=400.0, help="Page width in points")
    p_reanchor.add_argument("--height", type=float, default=600.0, help="Page height in points")
    p_reanchor.add_argument("--font-size", type=float, default=11.0, help="Font size in points")
    p_reanchor.set_defaults(func=cmd_reanchor)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line interface main function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        store = _open_store(args.db)
    except SQLAlchemyError as e:
        print(f"Error: cannot open database {args.db}: {e}")
        return 1

    try:
        return args.func(args, store)
    except SQLAlchemyError as e:
        print(f"Error: database operation failed: {e}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
