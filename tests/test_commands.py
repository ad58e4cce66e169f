import io

import pytest

from xv6kit.commands import cat, echo, fmtname, ls, main
from xv6kit.disk import BufferCache, Disk
from xv6kit.filesystem import FileSystem
from xv6kit.layout import BSIZE, DIRENT_SIZE, DIRSIZ, ROOTINO, Dirent, FileType, FsError
from xv6kit.mkfs import ImageBuilder

README = b"hello from the image\nsecond line\n"
BIG = bytes(range(256)) * 30  # spans direct and indirect blocks


def _image() -> bytes:
    buf = io.BytesIO()
    builder = ImageBuilder(buf)
    builder.add_file("README", README)
    builder.add_file("_big", BIG)
    builder.finish()
    return buf.getvalue()


@pytest.fixture
def fs():
    return FileSystem(BufferCache(Disk(_image())))


def test_fmtname_pads_last_element():
    assert fmtname("a/b/hello") == "hello".ljust(DIRSIZ)
    assert len(fmtname("x")) == DIRSIZ


def test_fmtname_long_name_unchanged():
    name = "n" * (DIRSIZ + 3)
    assert fmtname("dir/" + name) == name


def test_echo_joins_arguments():
    assert echo(["a", "b", "c"]) == "a b c\n"
    assert echo([]) == ""


def test_cat_reads_whole_file(fs):
    assert cat(fs, "README") == README
    assert cat(fs, "/big") == BIG


def test_cat_missing_file(fs):
    with pytest.raises(FsError):
        cat(fs, "nothere")


def test_cat_directory_gives_entries(fs):
    data = cat(fs, "/")
    assert len(data) == BSIZE
    assert Dirent.from_bytes(data[:DIRENT_SIZE]) == Dirent(ROOTINO, ".")


def test_ls_file(fs):
    lines = ls(fs, "/README")
    assert len(lines) == 1
    name, type_, ino, size = lines[0].rsplit(" ", 3)
    assert name == "README".ljust(DIRSIZ)
    assert int(type_) == FileType.FILE
    assert int(size) == len(README)
    assert int(ino) != ROOTINO


def test_ls_root_directory(fs):
    lines = ls(fs, "/")
    names = [line[:DIRSIZ].rstrip() for line in lines]
    assert names == [".", "..", "README", "big"]
    dot = lines[0].split()
    assert [int(v) for v in dot[1:]] == [FileType.DIR, ROOTINO, BSIZE]


def test_ls_dot_matches_root(fs):
    assert ls(fs, ".") == ls(fs, "/") or [l[:DIRSIZ] for l in ls(fs, ".")] == [
        l[:DIRSIZ] for l in ls(fs, "/")
    ]


def test_ls_missing(fs):
    with pytest.raises(FsError, match="cannot open"):
        ls(fs, "/missing")


def test_ls_path_too_long(fs):
    path = "/" + "./" * 250
    assert ls(fs, path) == ["ls: path too long"]


def test_main_echo(capsys):
    assert main(["echo", "hi", "there"]) == 0
    assert capsys.readouterr().out == "hi there\n"


def test_main_usage(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().err


def test_main_ls(tmp_path, capsys):
    image = tmp_path / "fs.img"
    image.write_bytes(_image())
    assert main(["ls", str(image), "/"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert [line[:DIRSIZ].rstrip() for line in out] == [".", "..", "README", "big"]


def test_main_ls_missing(tmp_path, capsys):
    image = tmp_path / "fs.img"
    image.write_bytes(_image())
    assert main(["ls", str(image), "/nope"]) == 1
    assert "ls: cannot open /nope" in capsys.readouterr().err


def test_main_cat(tmp_path, capsysbinary):
    image = tmp_path / "fs.img"
    image.write_bytes(_image())
    assert main(["cat", str(image), "README", "README"]) == 0
    assert capsysbinary.readouterr().out == README + README


def test_main_cat_missing(tmp_path, capsysbinary):
    image = tmp_path / "fs.img"
    image.write_bytes(_image())
    assert main(["cat", str(image), "gone"]) == 1
    assert capsysbinary.readouterr().out == b"cat: cannot open gone\n"