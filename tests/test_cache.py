from pathlib import Path

from procflow import config
from procflow.cache import AnalysisCache


def _setup(tmp_path: Path):
    binary = tmp_path / "code.bin"
    binary.write_bytes(b"\x90\xc3")
    out = tmp_path / "out"
    out.mkdir()
    (out / config.STORE_FILENAME).write_text("{}")
    return binary, out


def test_cache_validity(tmp_path: Path) -> None:
    binary, out = _setup(tmp_path)
    params = {"entry": 0, "extra_entries": [4], "mode": 32}

    cache = AnalysisCache(str(out))
    assert not cache.is_valid(str(binary), params)
    assert cache.procedure_id is None

    cache.save(str(binary), params, "proc-id", 0.5)
    assert cache.is_valid(str(binary), params)
    assert cache.procedure_id == "proc-id"
    assert cache.get_last_run_time() == 0.5

    fresh = AnalysisCache(str(out))
    assert fresh.is_valid(str(binary), dict(params))
    assert not fresh.is_valid(str(binary), dict(params, entry=1))


def test_cache_detects_changed_binary(tmp_path: Path) -> None:
    binary, out = _setup(tmp_path)
    params = {"entry": 0}
    cache = AnalysisCache(str(out))
    cache.save(str(binary), params, "proc-id", 0.1)

    binary.write_bytes(b"\xc3")
    assert not AnalysisCache(str(out)).is_valid(str(binary), params)


def test_cache_requires_store(tmp_path: Path) -> None:
    binary, out = _setup(tmp_path)
    cache = AnalysisCache(str(out))
    cache.save(str(binary), {}, "proc-id", 0.1)
    (out / config.STORE_FILENAME).unlink()
    assert not cache.is_valid(str(binary), {})


def test_invalidate(tmp_path: Path) -> None:
    binary, out = _setup(tmp_path)
    cache = AnalysisCache(str(out))
    cache.save(str(binary), {}, "proc-id", 0.1)
    cache.invalidate()
    assert not cache.cache_file.exists()
    assert not cache.is_valid(str(binary), {})


def test_cache_ignores_other_versions(tmp_path: Path) -> None:
    binary, out = _setup(tmp_path)
    (out / config.CACHE_FILENAME).write_text('{"version": 0}')
    assert not AnalysisCache(str(out)).is_valid(str(binary), {})
