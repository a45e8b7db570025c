import os

from mlsim.paths import PathResolver, strip_device_prefix


def make_resolver(**kwargs):
    kwargs.setdefault("case_sensitive", True)
    return PathResolver(**kwargs)


def test_virtual_root_gets_trailing_separator():
    resolver = make_resolver(virtual_root="/sandbox")
    assert resolver.virtual_root == "/sandbox/"
    resolver.set_virtual_root("")
    assert resolver.virtual_root is None


def test_to_real_path_is_idempotent():
    resolver = make_resolver(virtual_root="/sandbox")
    for path in ["/data/save.txt", "/", "/a/b/c"]:
        first, remapped = resolver.to_real_path(path)
        assert remapped is True
        second, remapped_again = resolver.to_real_path(first)
        assert second == first
        assert remapped_again is False


def test_virtual_round_trip():
    resolver = make_resolver(virtual_root="/tmp/mls-root/")
    for path in ["/data/save.txt", "/", "/x/y/z.png", "/with space/f"]:
        real, _ = resolver.to_real_path(path)
        virtual, remapped = resolver.to_virtual_path(real)
        assert remapped is True
        assert virtual == path


def test_relative_paths_are_not_remapped():
    resolver = make_resolver(virtual_root="/sandbox")
    assert resolver.to_real_path("data/file.txt") == ("data/file.txt", False)
    assert resolver.to_virtual_path("data/file.txt") == ("data/file.txt", False)


def test_device_prefix_is_stripped():
    assert strip_device_prefix("fat:/data/x") == "/data/x"
    assert strip_device_prefix("nitro:/x") == "/x"
    assert strip_device_prefix("C:/x") == "C:/x"
    resolver = make_resolver(virtual_root="/sandbox")
    assert resolver.to_real_path("fat:/data/x") == ("/sandbox/data/x", True)
    assert make_resolver().to_real_path("efs:/x") == ("/x", False)


def test_windows_style_root_uses_its_separator():
    resolver = make_resolver(virtual_root="C:\\mls\\root")
    real, remapped = resolver.to_real_path("/data/x.txt")
    assert remapped is True
    assert real == "C:\\mls\\root\\data\\x.txt"
    assert resolver.to_virtual_path(real) == ("/data/x.txt", True)


def test_non_string_and_empty_paths_pass_through():
    resolver = make_resolver(virtual_root="/sandbox")
    assert resolver.resolve("") == ("", False)
    assert resolver.resolve(None) == (None, False)
    assert resolver.resolve(3) == (3, False)
    assert resolver.to_real_path(None) == (None, False)


def test_resolve_existing_path_verbatim(tmp_path):
    target = tmp_path / "exists.txt"
    target.write_text("x")
    resolver = make_resolver()
    assert resolver.resolve(str(target)) == (str(target), True)


def test_resolve_case_insensitive(tmp_path, monkeypatch):
    (tmp_path / "Foo.TXT").write_text("x")
    monkeypatch.chdir(tmp_path)
    resolver = make_resolver()
    path, found = resolver.resolve("foo.txt")
    assert found is True
    assert path.endswith("Foo.TXT")
    assert os.path.exists(path)


def test_resolve_case_insensitive_nested_absolute(tmp_path):
    nested = tmp_path / "Data" / "Levels"
    nested.mkdir(parents=True)
    (nested / "Level1.MAP").write_text("x")
    resolver = make_resolver()
    path, found = resolver.resolve(str(tmp_path / "data" / "levels" / "level1.map"))
    assert found is True
    assert path == str(nested / "Level1.MAP")


def test_resolve_under_virtual_root(tmp_path):
    root = tmp_path / "root"
    (root / "data").mkdir(parents=True)
    (root / "data" / "Save.TXT").write_text("x")
    resolver = make_resolver(virtual_root=str(root))
    path, found = resolver.resolve("/data/save.txt")
    assert found is True
    assert path == str(root / "data" / "Save.TXT")


def test_resolve_bare_separator_is_remapped(tmp_path):
    resolver = make_resolver(virtual_root=str(tmp_path))
    path, found = resolver.resolve("/")
    assert found is True
    assert path == str(tmp_path) + os.sep


def test_resolve_miss_returns_best_effort_path(tmp_path):
    resolver = make_resolver(virtual_root=str(tmp_path))
    path, found = resolver.resolve("/missing/file.txt")
    assert found is False
    assert path == str(tmp_path) + "/missing/file.txt"


def test_search_path_order(tmp_path, monkeypatch):
    first = tmp_path / "A"
    second = tmp_path / "B"
    first.mkdir()
    second.mkdir()
    (second / "only.txt").write_text("b")
    monkeypatch.chdir(tmp_path)
    resolver = make_resolver()
    resolver.add_search_path(str(first))
    resolver.add_search_path(str(second))
    path, found = resolver.resolve("only.txt")
    assert found is True
    assert path == os.path.join(str(second), "only.txt")


def test_search_path_first_match_wins(tmp_path, monkeypatch):
    for name in ("A", "B"):
        (tmp_path / name).mkdir()
        (tmp_path / name / "both.txt").write_text(name)
    monkeypatch.chdir(tmp_path)
    resolver = make_resolver()
    resolver.add_search_path(str(tmp_path / "A"))
    resolver.add_search_path(str(tmp_path / "B"), prepend=True)
    path, found = resolver.resolve("both.txt")
    assert found is True
    assert path.startswith(str(tmp_path / "B"))


def test_search_path_skipped_for_remapped_paths(tmp_path):
    (tmp_path / "lib").mkdir()
    (tmp_path / "lib" / "x.txt").write_text("x")
    resolver = make_resolver(virtual_root=str(tmp_path / "root"), search_path=[str(tmp_path / "lib")])
    assert resolver.resolve("/x.txt")[1] is False
    assert resolver.resolve("x.txt", use_search_path=False)[1] is False


def test_search_path_maintenance():
    resolver = make_resolver()
    resolver.add_search_path("/a/")
    resolver.add_search_path("/b")
    resolver.add_search_path("/a")
    assert resolver.search_path == ["/a", "/b", "/a"]
    assert resolver.remove_search_path("/a") is True
    assert resolver.search_path == ["/b", "/a"]
    assert resolver.remove_search_path("/nope") is False
    assert resolver.remove_search_path() is True
    assert resolver.search_path == ["/b"]
    resolver.set_search_path("/c")
    assert resolver.search_path == ["/c"]
    resolver.set_search_path(None)
    assert resolver.search_path == []


def test_extra_search_paths_are_temporary(tmp_path, monkeypatch):
    (tmp_path / "extra").mkdir()
    (tmp_path / "extra" / "font.bin").write_text("x")
    monkeypatch.chdir(tmp_path)
    resolver = make_resolver(search_path=["/nowhere"])
    path, found = resolver.resolve_with_paths("font.bin", str(tmp_path / "extra"))
    assert found is True
    assert resolver.search_path == ["/nowhere"]


def test_find_case_insensitive(tmp_path):
    (tmp_path / "Sprite.PNG").write_text("x")
    resolver = make_resolver()
    assert resolver.find_case_insensitive(str(tmp_path), "sprite.png") == ("Sprite.PNG", True)
    assert resolver.find_case_insensitive(str(tmp_path), "other.png") == ("other.png", False)
    assert resolver.find_case_insensitive(str(tmp_path / "missing"), "x") == ("x", False)
