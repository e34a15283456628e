"""
Tests for the sidecar-annotator command line interface
"""

import json

import page_text_helpers  # noqa: F401  (puts src on the path)

from sidecar_annotator.cli import main
from sidecar_annotator.document import compute_doc_id

QUAD_B64 = "BAAAAAAAAAAAACBBAACgQQAAIEEAAKBBAAAAAAAAAAAAAAAA"  # 4 points

BUNDLE = {
    "format": "sidecar-annotator-bundle",
    "version": 1,
    "docId": "sha256:from-device",
    "ink": [
        {"id": "i1", "pageIndex": 0, "color": -16777216, "thickness": 2,
         "createdAtEpochMs": 1, "pointsB64": "AgAAAAAAgD8AAABAAABAQAAAgEA="},
    ],
    "highlights": [
        {"id": "h1", "pageIndex": 1, "type": "UNDERLINE", "quadPointsB64": QUAD_B64,
         "createdAtEpochMs": 2, "quote": "quick brown"},
        {"id": "h-bad", "pageIndex": 1, "quadPointsB64": "not base64!"},
    ],
    "notes": [
        {"id": "n1", "pageIndex": 0, "createdAtEpochMs": 3,
         "bounds": {"left": 10, "top": 10, "right": 100, "bottom": 60}, "text": "hi"},
    ],
}


def _write_bundle(tmp_path, payload=None):
    path = tmp_path / "bundle.json"
    path.write_text(json.dumps(payload if payload is not None else BUNDLE), encoding="utf-8")
    return path


def test_import_then_list(tmp_path, capsys):
    db = tmp_path / "data" / "annotations.db"
    bundle = _write_bundle(tmp_path)

    assert main(["--db", str(db), "import", "--doc-id", "sha256:mine", str(bundle)]) == 0
    out = capsys.readouterr().out
    assert "Imported 1 ink stroke(s), 1 highlight(s), 1 note(s) into sha256:mine" in out
    assert "Skipped 1 malformed row(s)" in out

    assert main(["--db", str(db), "--verbose", "list", "--doc-id", "sha256:mine"]) == 0
    out = capsys.readouterr().out
    assert "ink        1" in out
    assert "highlight  1" in out
    assert "note       1" in out
    assert "(layout-independent)" in out


def test_export_round_trip_through_another_document(tmp_path, capsys):
    db = str(tmp_path / "annotations.db")
    bundle = _write_bundle(tmp_path)
    exported = tmp_path / "exported.json"
    assert main(["--db", db, "import", "--doc-id", "sha256:a", str(bundle)]) == 0

    assert main(["--db", db, "export", "--doc-id", "sha256:a", "-o", str(exported)]) == 0

    data = json.loads(exported.read_text(encoding="utf-8"))
    assert data["format"] == "sidecar-annotator-bundle"
    assert data["docId"] == "sha256:a"
    assert [h["id"] for h in data["highlights"]] == ["h1"]
    assert data["highlights"][0]["type"] == "UNDERLINE"
    assert data["ink"][0]["color"] == 0xFF000000

    assert main(["--db", db, "import", "--doc-id", "sha256:b", str(exported)]) == 0
    capsys.readouterr()
    assert main(["--db", db, "list", "--doc-id", "sha256:b"]) == 0
    assert "highlight  1" in capsys.readouterr().out


def test_doc_path_uses_content_id(tmp_path, capsys):
    db = str(tmp_path / "annotations.db")
    doc = tmp_path / "book.pdf"
    doc.write_bytes(b"%PDF-1.4 not really a pdf")

    assert main(["--db", db, "list", "--doc", str(doc)]) == 0

    assert f"Document: {compute_doc_id(doc)}" in capsys.readouterr().out


def test_backup_is_written(tmp_path):
    db = tmp_path / "annotations.db"
    bundle = _write_bundle(tmp_path)
    assert main(["--db", str(db), "import", "--doc-id", "sha256:a", str(bundle)]) == 0

    assert main(["--db", str(db), "import", "--backup", "--doc-id", "sha256:a", str(bundle)]) == 0

    assert (tmp_path / "annotations.db.backup").exists()


def test_errors_exit_with_one(tmp_path, capsys):
    db = str(tmp_path / "annotations.db")

    assert main(["--db", db, "list"]) == 1
    assert main(["--db", db, "list", "--doc", str(tmp_path / "missing.pdf")]) == 1
    assert main(["--db", db, "import", "--doc-id", "x", str(tmp_path / "missing.json")]) == 1

    wrong_format = _write_bundle(tmp_path, {"format": "something-else", "version": 1})
    assert main(["--db", db, "import", "--doc-id", "x", str(wrong_format)]) == 1
    assert "unexpected bundle format" in capsys.readouterr().out


def test_reanchor_refuses_fixed_layout(tmp_path, capsys):
    import fitz  # PyMuPDF

    pdf = tmp_path / "fixed.pdf"
    doc = fitz.open()
    doc.new_page()
    doc.save(str(pdf))
    doc.close()

    assert main(["--db", str(tmp_path / "a.db"), "reanchor", "--doc", str(pdf)]) == 1
    assert "fixed layout" in capsys.readouterr().out
    assert main(["--db", str(tmp_path / "a.db"), "reanchor", "--doc-id", "x"]) == 1
