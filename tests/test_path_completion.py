import os
from pathlib import Path

import pytest


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    root = tmp_path / "work"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "notes.txt").write_text("notes\n")
    (root / "node_modules").mkdir()
    (root / ".env").write_text("SECRET=1\n")
    return root


def _texts(suggestions):
    return [s.text for s in suggestions]


@pytest.mark.asyncio
async def test_empty_partial_lists_current_directory(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path("", str(workdir))
    # Directories first, hidden entries skipped.
    assert _texts(result) == ["node_modules/", "src/", "notes.txt"]
    assert result[0].is_directory is True
    assert result[0].type == cmdsense_module.SuggestionType.DIRECTORY
    assert result[2].type == cmdsense_module.SuggestionType.DOCUMENT
    assert result[2].description == "Text file"
    assert result[2].full_path == str(workdir / "notes.txt")


@pytest.mark.asyncio
async def test_bare_prefix_filters_case_insensitively(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path("NO", str(workdir))
    assert _texts(result) == ["node_modules/", "notes.txt"]


@pytest.mark.asyncio
async def test_dot_prefix_shows_hidden_entries(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path(".e", str(workdir))
    assert _texts(result) == [".env"]


@pytest.mark.asyncio
async def test_trailing_separator_lists_that_directory(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path("src/", str(workdir))
    assert _texts(result) == ["src/main.py"]
    assert result[0].display_text == "main.py"
    assert result[0].type == cmdsense_module.SuggestionType.CODE_FILE
    assert result[0].description == "Python file"


@pytest.mark.asyncio
async def test_relative_path_with_separator(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path("src/ma", str(workdir))
    assert _texts(result) == ["src/main.py"]


@pytest.mark.asyncio
async def test_absolute_paths_keep_their_spelling(cmdsense_module, workdir: Path):
    result = await cmdsense_module.complete_path(f"{workdir}/no", "/")
    assert _texts(result) == [f"{workdir}/node_modules/", f"{workdir}/notes.txt"]

    listing = await cmdsense_module.complete_path(f"{workdir}/src/", "/")
    assert _texts(listing) == [f"{workdir}/src/main.py"]


@pytest.mark.asyncio
async def test_tilde_expands_to_home(cmdsense_module, workdir: Path):
    home = str(workdir)
    only_tilde = await cmdsense_module.complete_path("~", "/", home_directory=home)
    assert _texts(only_tilde) == ["~/node_modules/", "~/src/", "~/notes.txt"]

    prefixed = await cmdsense_module.complete_path("~/no", "/", home_directory=home)
    assert _texts(prefixed) == ["~/node_modules/", "~/notes.txt"]

    nested = await cmdsense_module.complete_path("~/src/m", "/", home_directory=home)
    assert _texts(nested) == ["~/src/main.py"]

    listing = await cmdsense_module.complete_path("~/src/", "/", home_directory=home)
    assert _texts(listing) == ["~/src/main.py"]


@pytest.mark.asyncio
async def test_home_falls_back_to_environment(
    cmdsense_module, workdir: Path, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("HOME", str(workdir))
    result = await cmdsense_module.complete_path("~/src/", "/")
    assert _texts(result) == ["~/src/main.py"]


@pytest.mark.asyncio
async def test_missing_directory_yields_nothing(cmdsense_module, workdir: Path):
    assert await cmdsense_module.complete_path("nope/", str(workdir)) == []


@pytest.mark.asyncio
async def test_remote_fetcher_with_mapping_entries(cmdsense_module):
    seen: list[str] = []

    async def fetcher(path: str):
        seen.append(path)
        return [
            {"name": "data", "isDirectory": True, "path": "/remote/data"},
            {"name": "run.sh", "is_directory": False, "permissions": "-rwxr-xr-x"},
            {"name": "archive.tar", "is_directory": False, "size": 2048},
            {"name": ""},
        ]

    result = await cmdsense_module.complete_path("", "/remote", fetcher=fetcher)

    assert seen == ["/remote"]
    assert _texts(result) == ["data/", "archive.tar", "run.sh"]
    kinds = {s.text: s.type for s in result}
    assert kinds["run.sh"] == cmdsense_module.SuggestionType.EXECUTABLE
    assert kinds["archive.tar"] == cmdsense_module.SuggestionType.ARCHIVE
    assert result[0].full_path == "/remote/data"


@pytest.mark.asyncio
async def test_fetcher_errors_degrade_to_empty(cmdsense_module):
    async def fetcher(path: str):
        raise ConnectionError("sftp session closed")

    assert await cmdsense_module.complete_path("", "/remote", fetcher=fetcher) == []


@pytest.mark.asyncio
async def test_listing_is_capped(cmdsense_module):
    async def fetcher(path: str):
        return [
            cmdsense_module.DirectoryEntry(name=f"f{i:02d}", is_directory=False, path=f"/d/f{i:02d}")
            for i in range(40)
        ]

    result = await cmdsense_module.complete_path("", "/d", fetcher=fetcher)
    assert len(result) == cmdsense_module.PATH_SUGGESTION_LIMIT
    assert result[0].text == "f00"


def test_classify_entry_on_windows(cmdsense_module):
    entry = cmdsense_module.DirectoryEntry(name="setup.EXE", is_directory=False, path="C:/setup.EXE")
    assert cmdsense_module.classify_entry(entry, windows=True) == (
        cmdsense_module.SuggestionType.EXECUTABLE,
        "Executable",
    )
    assert cmdsense_module.classify_entry(entry, windows=False)[0] == (
        cmdsense_module.SuggestionType.FILE
    )


def test_classify_entry_by_extension(cmdsense_module):
    def kind(name: str):
        entry = cmdsense_module.DirectoryEntry(name=name, is_directory=False, path=name)
        return cmdsense_module.classify_entry(entry)[0]

    types = cmdsense_module.SuggestionType
    assert kind("app.ts") == types.CODE_FILE
    assert kind("config.yml") == types.CONFIG_FILE
    assert kind("README.md") == types.DOCUMENT
    assert kind("logo.PNG") == types.IMAGE
    assert kind("backup.7z") == types.ARCHIVE
    assert kind("install.sh") == types.SCRIPT
    assert kind("Makefile") == types.FILE


def test_scan_search_path_finds_executables(
    cmdsense_module, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    tool = bin_dir / "mytool"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(0o755)
    lib = bin_dir / "libfoo.so"
    lib.write_text("")
    lib.chmod(0o755)
    (bin_dir / "notes").write_text("")
    (bin_dir / "subdir").mkdir()

    monkeypatch.setenv("PATH", os.pathsep.join([str(bin_dir), str(tmp_path / "missing")]))
    assert cmdsense_module.scan_search_path(windows=False) == ["mytool"]


def test_scan_search_path_on_windows(
    cmdsense_module, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in ("tool.exe", "run.BAT", "readme.txt"):
        (bin_dir / name).write_text("")

    monkeypatch.setenv("PATH", str(bin_dir))
    monkeypatch.setenv("PATHEXT", ".EXE;.BAT")
    assert cmdsense_module.scan_search_path(windows=True) == ["run", "tool"]
