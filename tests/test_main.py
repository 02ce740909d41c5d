import json

import pytest

from confcall.main import parse_args, run


def write_directory(tmp_path) -> str:
    path = tmp_path / "directory.json"
    path.write_text(
        json.dumps(
            {
                "me": "10.0.0.1",
                "participants": [
                    {"name": "Alice", "address": "10.0.0.1"},
                    {"name": "Bob", "address": "10.0.0.2"},
                ],
            }
        )
    )
    return str(path)


def test_parse_args_start_and_join_are_exclusive() -> None:
    args = parse_args(["--start", "Bob", "Carol", "--api"])
    assert args.start == ["Bob", "Carol"]
    assert args.api is True
    assert args.join is False

    with pytest.raises(SystemExit):
        parse_args(["--start", "Bob", "--join"])
    with pytest.raises(SystemExit):
        parse_args([])


def test_list_prints_invitable_participants(tmp_path, capsys) -> None:
    assert run(["--directory", write_directory(tmp_path), "--list"]) == 0

    assert capsys.readouterr().out.splitlines() == ["Bob\t10.0.0.2"]


def test_bad_directory_or_profile_exits_with_usage_error(tmp_path) -> None:
    assert run(["--directory", str(tmp_path / "missing.json"), "--list"]) == 2
    assert run(["--directory", write_directory(tmp_path), "--profile", "nope", "--list"]) == 2


def test_trace_flag_is_off_by_default() -> None:
    assert parse_args(["--join"]).trace is False
    assert parse_args(["--join", "--trace"]).trace is True
