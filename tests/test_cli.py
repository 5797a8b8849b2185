from pathlib import Path

from treemirror.cli import main
from treemirror.run_service import EXIT_INVALID_CONFIG, EXIT_RUNTIME_OR_CONFIG_ERROR, EXIT_SUCCESS


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_run_prints_direction_and_total_summary(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dest"
    _write(source / "a.txt", "a")
    _write(source / "sub" / "b.log", "b")

    exit_code = main(["run", "--directive", f"{source}:{destination}:\\.log$"])

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert f"{source} -> {destination} | new=1 existing=0 updated=0 errors=0 total=2" in output
    assert "TOTAL | new=1 existing=0 updated=0 errors=0 total=2" in output
    assert (destination / "a.txt").exists()


def test_run_can_exclude_skipped_files_from_total(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dest"
    _write(source / "a.txt", "a")
    _write(source / "b.log", "b")

    exit_code = main(
        [
            "run",
            "--directive",
            f"{source}:{destination}:\\.log$",
            "--exclude-skipped-from-total",
        ]
    )

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert "TOTAL | new=1 existing=0 updated=0 errors=0 total=1" in output


def test_run_reads_yaml_directive_file_and_writes_log_file(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dest"
    _write(source / "keep.txt", "k")
    _write(source / "cache" / "drop.bin", "d")
    directive_file = tmp_path / "directions.yaml"
    directive_file.write_text(
        f"""
directives:
  - from: {source.as_posix()}
    to: {destination.as_posix()}
    skip:
      - /cache/
""".strip(),
        encoding="utf-8",
    )
    log_file = tmp_path / "logs" / "treemirror.log"

    exit_code = main(["run", "--file", str(directive_file), "--verbose", "--log-file", str(log_file)])

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert "TOTAL | new=1 existing=0 updated=0 errors=0 total=2" in output
    assert not (destination / "cache" / "drop.bin").exists()
    assert "copy:" in log_file.read_text(encoding="utf-8")


def test_run_rejects_duplicate_destination_before_copying(tmp_path: Path, capsys) -> None:
    first = tmp_path / "one"
    second = tmp_path / "two"
    destination = tmp_path / "dest"
    _write(first / "a.txt", "a")
    _write(second / "b.txt", "b")

    exit_code = main(
        [
            "run",
            "--directive",
            f"{first}:{destination}",
            "--directive",
            f"{second}:{destination}",
        ]
    )

    err = capsys.readouterr().err
    assert exit_code == EXIT_INVALID_CONFIG
    assert "line 2" in err
    assert "already in use" in err
    assert not destination.exists()


def test_run_reports_direction_whose_source_vanished(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    destination = tmp_path / "dest"
    source.write_text("not a directory", encoding="utf-8")

    exit_code = main(["run", "--directive", f"{source}:{destination}"])

    captured = capsys.readouterr()
    assert exit_code == EXIT_RUNTIME_OR_CONFIG_ERROR
    assert "not a directory" in captured.err
    assert "TOTAL | new=0 existing=0 updated=0 errors=0 total=0" in captured.out


def test_run_without_directives_is_invalid(capsys) -> None:
    exit_code = main(["run"])

    err = capsys.readouterr().err
    assert exit_code == EXIT_INVALID_CONFIG
    assert "No directives given" in err


def test_list_prints_mappings(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    source.mkdir()
    directive_file = tmp_path / "directions.txt"
    directive_file.write_text(
        f"# mirrors\n{source}:{tmp_path / 'dest'}:tmp,\\.bak$\n",
        encoding="utf-8",
    )

    exit_code = main(["list", "--file", str(directive_file)])

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert f"{source} -> {tmp_path / 'dest'} (skip: tmp,\\.bak$)" in output


def test_validate_reports_missing_source(tmp_path: Path, capsys) -> None:
    exit_code = main(["validate", "--directive", f"{tmp_path / 'missing'}:{tmp_path / 'dest'}"])

    err = capsys.readouterr().err
    assert exit_code == EXIT_INVALID_CONFIG
    assert "Unable to locate `from_path`" in err


def test_validate_counts_directions(tmp_path: Path, capsys) -> None:
    source = tmp_path / "src"
    source.mkdir()

    exit_code = main(["validate", "--directive", f"{source}:{tmp_path / 'dest'}"])

    output = capsys.readouterr().out
    assert exit_code == EXIT_SUCCESS
    assert "1 direction(s)" in output
