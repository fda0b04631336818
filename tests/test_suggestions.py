from pathlib import Path

import pytest


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    root = tmp_path / "work"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("")
    (root / "notes.txt").write_text("")
    return root


@pytest.fixture()
def engine(cmdsense_module):
    return cmdsense_module.SuggestionEngine(
        windows=False, path_scanner=lambda: ["gitk", "git", "go"]
    )


def _texts(suggestions):
    return [s.text for s in suggestions]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_blank_input_has_no_suggestions(engine, text):
    assert await engine.get_suggestions(text, "/") == []


@pytest.mark.asyncio
async def test_command_completion_merges_sources(engine, cmdsense_module):
    await engine.add_to_history("git-lfs pull")
    await engine.add_to_history("grep -r TODO")

    result = await engine.get_suggestions("gi", "/")

    assert _texts(result) == ["git", "gitk", "git-lfs"]
    types = cmdsense_module.SuggestionType
    assert [s.type for s in result] == [types.COMMAND, types.COMMAND, types.HISTORY]
    assert result[0].description == "Version control system"
    assert result[2].description == "From history"


@pytest.mark.asyncio
async def test_command_completion_is_capped(cmdsense_module):
    engine = cmdsense_module.SuggestionEngine(
        windows=False, path_scanner=lambda: [f"zz{i}" for i in range(30)]
    )
    result = await engine.get_suggestions("zz", "/")
    assert len(result) == cmdsense_module.COMMAND_SUGGESTION_LIMIT


@pytest.mark.asyncio
async def test_history_contributes_at_most_five_commands(cmdsense_module):
    engine = cmdsense_module.SuggestionEngine(windows=False, path_scanner=lambda: [])
    for i in range(8):
        await engine.add_to_history(f"qq{i} --run")
    result = await engine.get_suggestions("qq", "/")
    assert len(result) == cmdsense_module.HISTORY_COMMAND_LIMIT
    # The five most recent, ordered by name.
    assert _texts(result) == ["qq3", "qq4", "qq5", "qq6", "qq7"]


@pytest.mark.asyncio
async def test_search_path_is_cached_with_ttl(cmdsense_module):
    scans: list[int] = []
    now = [1000.0]

    def scanner():
        scans.append(1)
        return ["tool"]

    engine = cmdsense_module.SuggestionEngine(
        windows=False,
        path_scanner=scanner,
        clock=lambda: now[0],
        path_cache_ttl_s=300,
    )

    await engine.get_suggestions("to", "/")
    now[0] += 299
    await engine.get_suggestions("too", "/")
    assert len(scans) == 1

    now[0] += 2
    result = await engine.get_suggestions("to", "/")
    assert len(scans) == 2
    assert "tool" in _texts(result)


@pytest.mark.asyncio
async def test_search_path_failures_are_tolerated(cmdsense_module):
    def scanner():
        raise PermissionError("nope")

    engine = cmdsense_module.SuggestionEngine(windows=False, path_scanner=scanner)
    assert _texts(await engine.get_suggestions("gi", "/")) == ["git"]


@pytest.mark.asyncio
async def test_subcommands_at_the_subcommand_position(engine, cmdsense_module):
    result = await engine.get_suggestions("git re", "/")
    assert _texts(result) == ["rebase", "remote", "reset", "revert"]
    assert {s.type for s in result} == {cmdsense_module.SuggestionType.SUBCOMMAND}
    assert result[1].description == "Manage remotes"

    everything = await engine.get_suggestions("git ", "/")
    assert len(everything) == 20
    assert "status" in _texts(everything)


@pytest.mark.asyncio
async def test_flag_suggestions_rank_short_first(engine):
    result = await engine.get_suggestions("ls -", "/")
    texts = _texts(result)
    assert texts == [
        "-R", "-S", "-a", "-l", "-la", "-lh", "-r", "-t", "--color", "--help",
    ]
    descriptions = {s.text: s.description for s in result}
    assert descriptions["-R"] == "Recursive"
    assert descriptions["--help"] == "Show help message"
    assert descriptions["-la"] == "Option"


@pytest.mark.asyncio
async def test_flag_suggestions_skip_used_flags(engine):
    texts = _texts(await engine.get_suggestions("ls -l -", "/"))
    assert "-l" not in texts
    assert "-la" in texts


@pytest.mark.asyncio
async def test_flag_prefix_filters(engine):
    assert _texts(await engine.get_suggestions("ls --", "/")) == ["--color", "--help"]
    assert _texts(await engine.get_suggestions("ls --he", "/")) == ["--help"]


@pytest.mark.asyncio
async def test_dash_trigger_character(engine):
    result = await engine.get_suggestions("ls -", "/", trigger_character="-")
    assert _texts(result)[0] == "-R"


@pytest.mark.asyncio
async def test_flag_suggestions_are_capped(cmdsense_module):
    info = cmdsense_module.CommandInfo(
        description="Many flags", flags=tuple(f"--opt{i:02d}" for i in range(30))
    )
    catalog = cmdsense_module.CommandCatalog(windows=False, static={"big": info})
    engine = cmdsense_module.SuggestionEngine(catalog=catalog, path_scanner=lambda: [])

    result = await engine.get_suggestions("big --", "/")
    assert len(result) == cmdsense_module.FLAG_SUGGESTION_LIMIT
    assert result[0].text == "--opt00"


@pytest.mark.asyncio
async def test_subcommand_flag_descriptions(engine):
    result = await engine.get_suggestions("pip3 -", "/")
    descriptions = {s.text: s.description for s in result}
    assert descriptions["-U"] == "Upgrade package"
    assert descriptions["--user"] == "Install to user directory"


@pytest.mark.asyncio
async def test_contextual_flags_after_space(engine, cmdsense_module):
    result = await engine.get_suggestions("pip3 install ", "/")
    assert _texts(result) == [
        "-U", "-e", "-r", "-t", "--no-cache-dir", "--target", "--upgrade", "--user",
    ]
    assert {s.type for s in result} == {cmdsense_module.SuggestionType.FLAG}


@pytest.mark.asyncio
async def test_contextual_flags_then_paths(engine, cmdsense_module, workdir: Path):
    result = await engine.get_suggestions("cat -n ", str(workdir))
    texts = _texts(result)
    assert texts == ["-E", "-T", "-b", "-s", "-v", "--help", "src/", "notes.txt"]
    assert result[-2].type == cmdsense_module.SuggestionType.DIRECTORY
    assert result[-1].type == cmdsense_module.SuggestionType.DOCUMENT


@pytest.mark.asyncio
async def test_directory_commands_list_paths(engine, workdir: Path):
    result = await engine.get_suggestions("cd ", str(workdir), auto_trigger=True)
    assert _texts(result) == ["src/", "notes.txt"]


@pytest.mark.asyncio
async def test_contextual_path_count_is_limited(cmdsense_module, tmp_path: Path):
    for i in range(15):
        (tmp_path / f"file{i:02d}.txt").write_text("")
    engine = cmdsense_module.SuggestionEngine(windows=False, path_scanner=lambda: [])

    result = await engine.get_suggestions("cd ", str(tmp_path))
    assert len(result) == cmdsense_module.CONTEXTUAL_PATH_LIMIT


@pytest.mark.asyncio
async def test_argument_path_completion(engine, cmdsense_module, workdir: Path):
    assert _texts(await engine.get_suggestions("cat no", str(workdir))) == ["notes.txt"]

    nested = await engine.get_suggestions("cat src/", str(workdir))
    assert _texts(nested) == ["src/main.py"]
    assert nested[0].type == cmdsense_module.SuggestionType.CODE_FILE

    triggered = await engine.get_suggestions(
        "cat src/", str(workdir), trigger_character="/"
    )
    assert _texts(triggered) == ["src/main.py"]


@pytest.mark.asyncio
async def test_unknown_commands_complete_paths(engine, workdir: Path):
    result = await engine.get_suggestions("frobnicate sr", str(workdir))
    assert _texts(result) == ["src/"]


@pytest.mark.asyncio
async def test_remote_fetcher_and_home(engine):
    calls: list[str] = []

    async def fetcher(path: str):
        calls.append(path)
        return [{"name": "results", "is_directory": True, "path": f"{path}/results"}]

    result = await engine.get_suggestions(
        "cd ~/", "/scratch", directory_fetcher=fetcher, home_directory="/home/alice"
    )
    assert calls == ["/home/alice"]
    assert _texts(result) == ["~/results/"]


@pytest.mark.asyncio
async def test_learning_through_the_engine(engine, cmdsense_module):
    calls: list[str] = []

    async def runner(command: str) -> str:
        calls.append(command)
        if command == "acme --help":
            return "Commands:\n  deploy   Ship it\n  status   Show state\n"
        return ""

    result = await engine.get_suggestions("acme d", "/", command_runner=runner)
    assert _texts(result) == ["deploy"]
    assert result[0].description == "Ship it"
    assert "acme" in engine.catalog.learned

    await engine.get_suggestions("acme s", "/", command_runner=runner)
    assert calls == ["acme --help"]


@pytest.mark.asyncio
async def test_runner_failures_degrade(engine):
    async def runner(command: str) -> str:
        raise TimeoutError("help probe hung")

    assert await engine.get_suggestions("acme -", "/", command_runner=runner) == []


@pytest.mark.asyncio
async def test_tokenizer_honors_quotes(cmdsense_module):
    tokenize = cmdsense_module.tokenize_input
    assert tokenize('git commit -m "fix the bug"') == ["git", "commit", "-m", "fix the bug"]
    assert tokenize("cat 'my file' ") == ["cat", "my file", ""]
    assert tokenize('echo "open ') == ["echo", "open "]
    assert tokenize("ls   -la") == ["ls", "-la"]


def test_labels_cover_every_type(cmdsense_module):
    for kind in cmdsense_module.SuggestionType:
        assert cmdsense_module.suggestion_label(kind).startswith("[")
    assert cmdsense_module.suggestion_label(cmdsense_module.SuggestionType.FLAG) == "[flag]"


def test_sort_key_defaults_to_text(cmdsense_module):
    s = cmdsense_module.Suggestion(text="git", display_text="git")
    assert s.sort_key == "git"
    assert s.with_sort_key("0git").sort_key == "0git"
    assert s.is_command is False


def test_tokenizer_keeps_quoted_empty_arguments(cmdsense_module):
    tokenize = cmdsense_module.tokenize_input
    assert tokenize("git commit -m '' ") == ["git", "commit", "-m", "", ""]
    assert tokenize('echo ""') == ["echo", ""]
    assert tokenize('"') == [""]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["'' ", '"', '""'])
async def test_quotes_alone_have_no_suggestions(engine, text):
    assert await engine.get_suggestions(text, "/") == []


@pytest.mark.asyncio
async def test_queries_do_not_reread_config(
    cmdsense_module, engine, workdir: Path, monkeypatch: pytest.MonkeyPatch
):
    loads = []

    def counting_load():
        loads.append(1)
        return {}

    monkeypatch.setattr(cmdsense_module, "_load_config", counting_load)
    for text in ("g", "gi", "git", "git ", "git s"):
        await engine.get_suggestions(text, str(workdir))
    assert loads == []
