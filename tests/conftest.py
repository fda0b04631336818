from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def cmdsense_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "cmdsense-home"
    monkeypatch.setenv("CMDSENSE_HOME", str(home))
    for key in (
        "CMDSENSE_VERBOSE",
        "CMDSENSE_DEBOUNCE_MS",
        "CMDSENSE_MAX_HISTORY",
        "CMDSENSE_MAX_RECENT_DIRS",
        "CMDSENSE_PATH_CACHE_TTL_S",
        "CMDSENSE_HELP_TIMEOUT_S",
    ):
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture()
def cmdsense_module(cmdsense_home: Path):
    # Import after CMDSENSE_HOME is set.
    import cmdsense  # type: ignore

    cmdsense._verbose_level.cache_clear()
    yield cmdsense
    cmdsense._verbose_level.cache_clear()
