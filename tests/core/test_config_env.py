import os

from lumina_backend import config


def test_env_int_default_invalid_and_clamps(monkeypatch):
    monkeypatch.delenv("LUMINA_TEST_INT", raising=False)
    assert config._env_int(7, "LUMINA_TEST_INT") == 7

    monkeypatch.setenv("LUMINA_TEST_INT", "oops")
    assert config._env_int(7, "LUMINA_TEST_INT") == 7

    monkeypatch.setenv("LUMINA_TEST_INT", "-5")
    assert config._env_int(7, "LUMINA_TEST_INT", min_value=0) == 0

    monkeypatch.setenv("LUMINA_TEST_INT", "999")
    assert config._env_int(7, "LUMINA_TEST_INT", max_value=100) == 100


def test_env_int_first_non_empty_name_wins(monkeypatch):
    monkeypatch.setenv("LUMINA_TEST_A", "  ")
    monkeypatch.setenv("LUMINA_TEST_B", "12")
    assert config._env_int(1, "LUMINA_TEST_A", "LUMINA_TEST_B") == 12


def test_env_float_and_bool(monkeypatch):
    monkeypatch.setenv("LUMINA_TEST_FLOAT", "2.5")
    assert config._env_float(0.0, "LUMINA_TEST_FLOAT") == 2.5
    monkeypatch.setenv("LUMINA_TEST_FLOAT", "-1")
    assert config._env_float(0.0, "LUMINA_TEST_FLOAT", min_value=0.0) == 0.0

    monkeypatch.delenv("LUMINA_TEST_BOOL", raising=False)
    assert config._env_bool(True, "LUMINA_TEST_BOOL") is True
    monkeypatch.setenv("LUMINA_TEST_BOOL", "off")
    assert config._env_bool(True, "LUMINA_TEST_BOOL") is False


def test_library_paths_are_normalized_and_deduplicated(monkeypatch):
    raw = os.pathsep.join(["/media/photos/", "/media/photos", "", "/media/music"])
    monkeypatch.setenv("LUMINA_LIBRARY_PATHS", raw)
    assert config._resolve_library_paths() == ["/media/photos", "/media/music"]

    monkeypatch.delenv("LUMINA_LIBRARY_PATHS")
    assert config._resolve_library_paths() == []


def test_data_dir_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LUMINA_DATA_DIR", str(tmp_path / "data"))
    assert config._resolve_data_dir() == (tmp_path / "data").resolve()


def test_query_limits_are_consistent():
    assert 1 <= config.QUERY_DEFAULT_LIMIT <= config.QUERY_MAX_LIMIT
    assert config.SYNC_BATCH_SIZE >= 1
