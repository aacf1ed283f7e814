"""Tests for collision-free replay saving."""

from single_download import save_replay, unique_file_path


def test_unique_path_free_name(tmp_path):
    assert unique_file_path(tmp_path / "game.rep") == tmp_path / "game.rep"


def test_unique_path_appends_counter(tmp_path):
    (tmp_path / "game.rep").write_bytes(b"1")
    assert unique_file_path(tmp_path / "game.rep") == tmp_path / "game (1).rep"

    (tmp_path / "game (1).rep").write_bytes(b"2")
    (tmp_path / "game (2).rep").write_bytes(b"3")
    assert unique_file_path(tmp_path / "game.rep") == tmp_path / "game (3).rep"


def test_unique_path_only_last_extension_moves(tmp_path):
    (tmp_path / "a.b.rep").write_bytes(b"1")
    assert unique_file_path(tmp_path / "a.b.rep").name == "a.b (1).rep"


def test_unique_path_without_extension(tmp_path):
    (tmp_path / "replay").write_bytes(b"1")
    assert unique_file_path(tmp_path / "replay").name == "replay (1)"


def test_save_replay_creates_folder_and_never_overwrites(tmp_path):
    folder = tmp_path / "out"

    first, err1 = save_replay(b"first", str(folder), "game.rep")
    second, err2 = save_replay(b"second", str(folder), "game.rep")

    assert err1 is None and err2 is None
    assert first.name == "game.rep"
    assert second.name == "game (1).rep"
    assert first.read_bytes() == b"first"
    assert second.read_bytes() == b"second"


def test_save_replay_reports_write_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    # output folder path is an existing file, so it can't be created
    path, err = save_replay(b"x", str(blocker / "sub"), "game.rep")
    assert path is None
    assert err
