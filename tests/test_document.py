from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from conftest import posix_only
from format_transformer.conversion import document, office
from format_transformer.conversion.exceptions import DocumentConversionError, ToolExecutionError

pytestmark = posix_only

# Minimal soffice: writes <outdir>/<stem>.<ext> ($CASE=upper writes an upper-case extension)
FAKE_SOFFICE = """
echo "$@" >> "$(dirname "$0")/calls.log"
outdir=""; fmt=""; src=""
while [ $# -gt 0 ]; do
  case "$1" in
    --outdir) outdir="$2"; shift 2 ;;
    --convert-to) fmt="$2"; shift 2 ;;
    *) src="$1"; shift ;;
  esac
done
base=$(basename "$src")
stem="${base%.*}"
ext="${fmt%%:*}"
if [ "$CASE" = "upper" ]; then ext=$(echo "$ext" | tr 'a-z' 'A-Z'); fi
echo "converted $base" > "$outdir/$stem.$ext"
"""


@pytest.fixture
def source(tmp_path: Path) -> str:
    src_dir = tmp_path / "in"
    src_dir.mkdir()
    src = src_dir / "report.docx"
    src.write_bytes(b"PK fake docx")
    return str(src)


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def soffice(make_tool, monkeypatch):
    monkeypatch.delenv("CASE", raising=False)
    return make_tool("soffice", FAKE_SOFFICE)


def test_cli_output_moved_to_destination(soffice, source, out_dir, monkeypatch):
    monkeypatch.setattr(document, "SOFFICE_BINARY", soffice)
    dest = out_dir / "final.pdf"
    progress = []
    document.convert_document(source, str(dest), "PDF", progress.append)

    assert dest.read_text().strip() == "converted report.docx"
    assert not (out_dir / "report.pdf").exists()
    assert progress == [30, 80]


def test_cli_output_found_by_scan(soffice, source, out_dir, monkeypatch):
    monkeypatch.setattr(document, "SOFFICE_BINARY", soffice)
    monkeypatch.setenv("CASE", "upper")
    dest = out_dir / "report.pdf"
    document.convert_document(source, str(dest), "pdf")
    assert dest.read_text().strip() == "converted report.docx"
    assert not (out_dir / "report.PDF").exists()


def test_filter_name_case_is_preserved(soffice, source, out_dir, monkeypatch):
    monkeypatch.setattr(document, "SOFFICE_BINARY", soffice)
    document.convert_document(source, str(out_dir / "report.pdf"), "PDF:writer_pdf_Export")
    logged = (Path(soffice).parent / "calls.log").read_text()
    assert "--convert-to pdf:writer_pdf_Export" in logged


def test_find_generated_output_ignores_source(tmp_path: Path):
    src = tmp_path / "notes.txt"
    src.write_text("x")
    assert document.find_generated_output(str(tmp_path), str(src), "txt") is None
    (tmp_path / "notes-1.txt").write_text("y")
    assert document.find_generated_output(str(tmp_path), str(src), "txt") == str(tmp_path / "notes-1.txt")


def test_fallback_used_when_cli_fails(soffice, source, out_dir, monkeypatch, tmp_path):
    monkeypatch.setattr(document, "SOFFICE_BINARY", str(tmp_path / "missing-soffice"))
    monkeypatch.setattr(office, "find_soffice", lambda: soffice)
    dest = out_dir / "report.pdf"
    progress = []
    document.convert_document(source, str(dest), "pdf", progress.append)

    assert dest.read_text().strip() == "converted source.docx"
    assert progress == [30, 40, 90]
    logged = (Path(soffice).parent / "calls.log").read_text()
    assert "-env:UserInstallation=file://" in logged


def test_both_strategies_fail(source, out_dir, monkeypatch, tmp_path):
    monkeypatch.setattr(document, "SOFFICE_BINARY", str(tmp_path / "missing-soffice"))
    monkeypatch.setattr(office, "find_soffice", lambda: None)
    with pytest.raises(DocumentConversionError) as excinfo:
        document.convert_document(source, str(out_dir / "report.pdf"), "pdf")
    message = str(excinfo.value)
    assert "CLI error:" in message and "missing-soffice" in message
    assert "library error:" in message and "Could not find soffice" in message
    assert not (out_dir / "report.pdf").exists()


def test_convert_bytes_cleans_scratch_dir(soffice, monkeypatch, tmp_path):
    monkeypatch.setattr(office, "find_soffice", lambda: soffice)
    created = []
    real_mkdtemp = office.tempfile.mkdtemp

    def tracking_mkdtemp(**kwargs):
        path = real_mkdtemp(dir=tmp_path, **kwargs)
        created.append(Path(path))
        return path

    monkeypatch.setattr(office.tempfile, "mkdtemp", tracking_mkdtemp)
    assert office.convert_bytes(b"text", "pdf", source_name="a.odt").strip() == b"converted source.odt"
    assert created and not created[0].exists()


def _age(path: Path, seconds: float = 3600) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


def test_stale_prefix_match_is_not_taken(make_tool, source, out_dir, monkeypatch, tmp_path):
    # Suite exits cleanly without writing anything
    monkeypatch.setattr(document, "SOFFICE_BINARY", make_tool("soffice", "exit 0"))
    other = out_dir / "report_final_signed.pdf"
    other.write_bytes(b"user's other file")
    _age(other)

    with pytest.raises(ToolExecutionError, match="did not produce"):
        document.convert_with_cli(source, str(out_dir / "out.pdf"), "pdf")
    assert other.read_bytes() == b"user's other file"
    assert not (out_dir / "out.pdf").exists()


def test_stale_exact_name_triggers_fallback(make_tool, soffice, source, out_dir, monkeypatch):
    monkeypatch.setattr(document, "SOFFICE_BINARY", make_tool("silent-soffice", "exit 0"))
    monkeypatch.setattr(office, "find_soffice", lambda: soffice)
    previous = out_dir / "report.pdf"
    previous.write_bytes(b"last year's export")
    _age(previous)
    dest = out_dir / "fresh.pdf"
    progress = []
    document.convert_document(source, str(dest), "pdf", progress.append)

    assert dest.read_text().strip() == "converted source.docx"
    assert previous.read_bytes() == b"last year's export"
    assert progress == [30, 40, 90]


def test_find_generated_output_since(tmp_path: Path):
    src = tmp_path / "deck.pptx"
    src.write_bytes(b"PK")
    old = tmp_path / "deck-old.pdf"
    old.write_bytes(b"old")
    _age(old)
    started = time.time()
    assert document.find_generated_output(str(tmp_path), str(src), "pdf", since=started) is None
    (tmp_path / "deck.pdf").write_bytes(b"new")
    assert document.find_generated_output(str(tmp_path), str(src), "pdf", since=started) == str(tmp_path / "deck.pdf")
