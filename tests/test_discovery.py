import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from trackscan.scan.diagnostics import DiagnosticKind, DiagnosticSink
from trackscan.scan.discovery import DiscoveryConfig, Language, decode_source, ext_language, iter_sources


def _write(root: Path, rel: str, data) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, bytes):
        path.write_bytes(data)
    else:
        path.write_text(data, encoding="utf-8")


def test_walk_is_lexicographic_files_before_subdirectories(tmp_path):
    for rel in ["b.py", "a.js", "sub/z.ts", "sub/inner/y.tsx", "sub/a.jsx", "zz/last.py", "notes.txt"]:
        _write(tmp_path, rel, "x = 1\n")

    units = list(iter_sources(tmp_path))
    assert [u.path for u in units] == ["a.js", "b.py", "sub/a.jsx", "sub/z.ts", "sub/inner/y.tsx", "zz/last.py"]
    assert [u.language for u in units] == [Language.JS, Language.PY, Language.JSX, Language.TS, Language.TSX, Language.PY]


def test_default_excludes_and_custom_globs(tmp_path):
    for rel in ["app.js", "node_modules/pkg/index.js", "dist/bundle.js", "lib/vendor.min.js", "types.d.ts", "src/keep.py"]:
        _write(tmp_path, rel, "x\n")

    assert [u.path for u in iter_sources(tmp_path)] == ["app.js", "src/keep.py"]

    only_src = DiscoveryConfig(include_globs=("src/*",))
    assert [u.path for u in iter_sources(tmp_path, only_src)] == ["src/keep.py"]


def test_language_gate_and_size_cap(tmp_path):
    _write(tmp_path, "a.py", "x = 1\n")
    _write(tmp_path, "b.js", "let x = 1;\n")
    _write(tmp_path, "big.py", "x = 1\n" * 100)

    cfg = DiscoveryConfig(enable_langs={Language.PY}, max_file_size_bytes=50)
    assert [u.path for u in iter_sources(tmp_path, cfg)] == ["a.py"]


def test_decoding_failures_are_reported(tmp_path):
    _write(tmp_path, "bad.py", b"x = '\xff\xfe\xfa'\n")
    _write(tmp_path, "bom.py", b"\xef\xbb\xbfx = 'ok'\n")
    _write(tmp_path, "bin.js", b"\x00\x01\x02binary")

    sink = DiagnosticSink()
    units = list(iter_sources(tmp_path, sink=sink))

    assert [u.path for u in units] == ["bom.py"]
    assert units[0].text == "x = 'ok'\n"
    (diag,) = sink.items()
    assert diag.path == "bad.py"
    assert diag.kind is DiagnosticKind.ENCODING_ERROR
    assert sink.counters()["kind:ENCODING_ERROR"] == 1


def test_missing_root_raises(tmp_path):
    with pytest.raises(NotADirectoryError):
        list(iter_sources(tmp_path / "nope"))


def test_extension_and_tag_mapping():
    assert ext_language("a/b.MJS") is Language.JS
    assert ext_language("x.cjs") is Language.JS
    assert ext_language("app/models/user.rb") is Language.RB
    assert ext_language("cmd/main.go") is Language.GO
    assert ext_language("x.rs") is Language.UNKNOWN
    assert Language.parse("TypeScript") is Language.TS
    assert Language.parse("ruby") is Language.RB
    assert Language.parse("golang") is Language.GO
    assert Language.parse("py") is Language.PY
    assert Language.parse("cobol") is Language.UNKNOWN


def test_decode_source_handles_utf16_bom():
    assert decode_source("track('é')".encode("utf-16")) == "track('é')"
