import json
from pathlib import Path

import pytest

from procflow import config
from procflow.__main__ import main
from procflow.disasm import Disassembler
from procflow.marshal import load
from procflow.store import JsonStore

# xor eax, eax ; je +2 ; inc eax ; inc eax ; ret
CODE = bytes.fromhex("31c074024040c3")


def _write_binary(base: Path, code: bytes = CODE) -> Path:
    path = base / "code.bin"
    path.write_bytes(code)
    return path


def _run(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main([str(a) for a in argv])
    return exc.value.code


def test_cli_writes_outputs(tmp_path: Path, capsys) -> None:
    binary = _write_binary(tmp_path)
    out = tmp_path / "out"

    assert _run([binary, "--base", "0x1000", "-o", out]) == 0
    assert "Done in" in capsys.readouterr().out

    for name in ("summary.json", "procedure.json", "procedure.dot",
                 "procedure.asm", config.STORE_FILENAME, config.CACHE_FILENAME):
        assert (out / name).exists(), name

    summary = json.loads((out / "summary.json").read_text())
    assert summary["procedure"] == "func_00001000"
    assert summary["entry"] == "0x00001000"
    assert summary["blocks"] == 3
    assert summary["edges"] == 4

    listing = (out / "procedure.asm").read_text()
    assert listing.index("loc_00001000:") < listing.index("loc_00001006:")
    assert "0x00001002  7402" in listing

    procedure = json.loads((out / "procedure.json").read_text())
    assert procedure["rev_postorder"][0] == procedure["entry"]

    cached = json.loads((out / config.CACHE_FILENAME).read_text())
    saved = load(cached["procedure_id"], JsonStore(out / config.STORE_FILENAME))
    assert len(saved.blocks) == 3


def test_cli_cache_hit(tmp_path: Path, capsys) -> None:
    binary = _write_binary(tmp_path)
    out = tmp_path / "out"
    assert _run([binary, "-o", out]) == 0
    capsys.readouterr()

    assert _run([binary, "-o", out, "--stats-only"]) == 0
    text = capsys.readouterr().out
    assert "Cache hit" in text
    assert "Procedure Recovery Summary" in text

    assert _run([binary, "-o", out, "--force"]) == 0
    assert "Cache hit" not in capsys.readouterr().out


def test_cli_stats_only_writes_nothing(tmp_path: Path, capsys) -> None:
    binary = _write_binary(tmp_path)
    out = tmp_path / "out"
    assert _run([binary, "-o", out, "--stats-only"]) == 0
    assert "Blocks:" in capsys.readouterr().out
    assert not out.exists()


def test_cli_user_errors(tmp_path: Path, capsys) -> None:
    assert _run([tmp_path / "missing.bin"]) == 1
    assert "Error:" in capsys.readouterr().err

    binary = _write_binary(tmp_path)
    assert _run([binary, "--entry", "0x100", "-o", tmp_path / "out"]) == 1
    assert "outside the image" in capsys.readouterr().err


def test_extra_entries_extend_procedure(tmp_path: Path) -> None:
    # ret ; inc eax ; ret
    binary = _write_binary(tmp_path, bytes.fromhex("c340c3"))
    d = Disassembler(str(binary), entry=0, extra_entries=[1],
                     output_dir=str(tmp_path / "out"), stats_only=True)
    assert d.run()

    proc = d.procedure
    assert sorted(b.area.lower for b in proc.blocks) == [0, 1]
    assert proc.entry_block.start == 0
    assert proc.name == "func_00000000"


def test_forced_rerun_replaces_stored_procedure(tmp_path: Path) -> None:
    binary = _write_binary(tmp_path)
    out = tmp_path / "out"
    assert _run([binary, "-o", out]) == 0
    first = json.loads((out / config.CACHE_FILENAME).read_text())["procedure_id"]

    assert _run([binary, "-o", out, "--force"]) == 0
    second = json.loads((out / config.CACHE_FILENAME).read_text())["procedure_id"]

    store = JsonStore(out / config.STORE_FILENAME)
    assert first != second
    assert first not in store
    assert len(store) == 3 + 1
    assert len(load(second, store).blocks) == 3
