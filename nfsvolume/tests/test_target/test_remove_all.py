import pytest

import nfsvolume.constants as constants
from nfsvolume.errors import is_not_dir_error, NFSStatus

READDIRPLUS = constants.NFSPROC3_READDIRPLUS
REMOVE = constants.NFSPROC3_REMOVE
RMDIR = constants.NFSPROC3_RMDIR


def make_tree(server):
    server.make_file("a/b/c/f1")
    server.make_file("a/b/f2")
    server.make_file("a/f3")
    server.make_dirs("a/d")
    server.make_file("keep")


def test_remove_tree(server, target):
    make_tree(server)

    target.remove_all("/a")

    assert not server.exists("a")
    assert server.exists("keep")


def test_removed_tree_cannot_be_resolved(server, target):
    server.make_file("a/b/c.txt")
    server.make_file("a/d.txt")

    target.remove_all("a")

    for path in ["a", "a/b", "a/b/c.txt", "a/d.txt"]:
        with pytest.raises(FileNotFoundError):
            target.lookup(path)


def test_remove_tree_depth_first(server, target):
    make_tree(server)

    target.remove_all("/a")

    deletions = [name for proc, name in server.calls if proc in (REMOVE, RMDIR)]

    # Every entry is deleted after its contents, the first rmdir is the attempt
    # to delete the top directory right away
    assert deletions.index("f1") < deletions.index("c")
    assert deletions.index("c") < deletions.index("b")
    assert deletions.index("f2") < deletions.index("b")
    assert deletions[0] == "a"
    assert deletions[-1] == "a"


def test_remove_tree_with_non_utf8_names(server, target):
    server.make_file("a/caf\udce9/r\udcf6sti.txt")
    server.make_file("a/na\udcefve.txt")

    target.remove_all("/a")

    deleted = {name for proc, name in server.calls if proc in (REMOVE, RMDIR)}

    assert not server.exists("a")
    assert deleted == {"a", "caf\udce9", "r\udcf6sti.txt", "na\udcefve.txt"}


def test_remove_missing_tree(server, target):
    target.remove_all("/missing")

    assert server.count(RMDIR) == 1
    assert server.count(READDIRPLUS) == 0


def test_remove_empty_tree(server, target):
    server.make_dirs("a")

    target.remove_all("/a")

    assert not server.exists("a")
    assert server.count(RMDIR) == 1
    assert server.count(READDIRPLUS) == 0


def test_remove_tree_of_file(server, target):
    server.make_file("f")

    with pytest.raises(OSError) as exc_info:
        target.remove_all("/f")

    assert is_not_dir_error(exc_info.value)
    assert server.exists("f")


def test_remove_tree_missing_parent(server, target):
    with pytest.raises(FileNotFoundError):
        target.remove_all("/missing/a")


def test_remove_large_tree(server, target):
    server.page_size = 3

    for i in range(10):
        server.make_file(f"a/f{i}")
        server.make_file(f"a/d{i}/f")

    target.remove_all("/a")

    assert not server.exists("a")


def test_remove_tree_without_entry_attributes(server, target):
    server.readdir_attributes = False
    make_tree(server)

    target.remove_all("/a")

    assert not server.exists("a")


def test_remove_tree_aborts_on_failure(server, target, caplog):
    make_tree(server)
    server.fail(REMOVE, NFSStatus.NFS3ERR_ACCES, "f2")

    with pytest.raises(PermissionError):
        target.remove_all("/a")

    assert server.exists("a/b/f2")
    assert "error deleting f2" in caplog.text

    # Nothing is deleted after the failure
    assert server.calls[-1] == (REMOVE, "f2")


def test_remove_tree_retries_top_directory(server, target):
    make_tree(server)
    server.fail(RMDIR, NFSStatus.NFS3ERR_ACCES, "a")

    # Refusing the first attempt doesn't prevent emptying the tree
    with pytest.raises(PermissionError):
        target.remove_all("/a")

    assert server.exists("a")
    assert server.resolve("a").children == {}
    assert server.count(RMDIR, "a") == 2


def test_remove_tree_invalidates_cached_lookups(server, target):
    make_tree(server)
    target.lookup("/a/b/c")

    target.remove_all("/a")

    with pytest.raises(FileNotFoundError):
        target.lookup("/a/b/c")


def test_remove_tree_root(target):
    with pytest.raises(ValueError):
        target.remove_all("/")
