import io

import pytest

from xv6kit.disk import BufferCache, Disk
from xv6kit.filesystem import FileSystem
from xv6kit.layout import (
    BSIZE,
    LOGSIZE,
    MAXFILE,
    ROOTINO,
    FileType,
    Superblock,
)
from xv6kit.mkfs import ImageBuilder, build_image, main


def _image(files=None):
    buf = io.BytesIO()
    builder = ImageBuilder(buf)
    for name, data in (files or {}).items():
        builder.add_file(name, data)
    builder.finish()
    return builder, buf.getvalue()


def _read_file(image, path):
    fs = FileSystem(BufferCache(Disk(image)))
    ip = fs.namei(path)
    fs.lock(ip)
    try:
        return fs.read(ip, 0, ip.size)
    finally:
        fs.unlock_put(ip)


def test_superblock_fields():
    _, image = _image()
    assert Superblock.from_bytes(image[BSIZE:2 * BSIZE]) == Superblock(1024, 985, 200, LOGSIZE)
    assert len(image) == 1024 * BSIZE


def test_root_inode_is_directory():
    builder, _ = _image()
    assert builder.root == ROOTINO
    din = builder.read_inode(ROOTINO)
    assert din.type == FileType.DIR
    assert din.nlink == 1
    assert din.size % BSIZE == 0 and din.size > 0


def test_dot_entries_point_at_root():
    _, image = _image()
    fs = FileSystem(BufferCache(Disk(image)))
    root = fs.namei("/")
    fs.lock(root)
    for name in (".", ".."):
        found = fs.lookup(root, name)
        assert found[0].inum == ROOTINO
        fs.put(found[0])
    fs.unlock_put(root)


def test_small_file_round_trip():
    _, image = _image({"readme": b"hello world\n"})
    assert _read_file(image, "/readme") == b"hello world\n"


def test_file_using_indirect_block():
    payload = bytes(i % 253 for i in range(20 * BSIZE + 7))
    _, image = _image({"big": payload})
    assert _read_file(image, "/big") == payload


def test_leading_underscore_dropped():
    _, image = _image({"_cat": b"meow"})
    assert _read_file(image, "/cat") == b"meow"


def test_name_with_slash_rejected():
    builder = ImageBuilder(io.BytesIO())
    with pytest.raises(ValueError):
        builder.add_file("a/b", b"")


def test_inconsistent_sizes_rejected():
    with pytest.raises(ValueError):
        ImageBuilder(io.BytesIO(), size=1024, nblocks=900)


def test_append_beyond_max_file():
    builder = ImageBuilder(io.BytesIO())
    inum = builder.alloc_inode(FileType.FILE)
    with pytest.raises(ValueError):
        builder.append(inum, bytes(MAXFILE * BSIZE + 1))


def test_bitmap_marks_used_blocks():
    builder, image = _image({"f": bytes(3 * BSIZE)})
    sector = builder.ninodes // 8 + 3
    bitmap = image[sector * BSIZE:(sector + 1) * BSIZE]
    used = builder.used_blocks
    assert all(bitmap[i // 8] >> (i % 8) & 1 for i in range(used))
    assert not bitmap[used // 8] >> (used % 8) & 1
    assert used == builder.free_block


def test_inode_round_trip():
    builder = ImageBuilder(io.BytesIO())
    inum = builder.alloc_inode(FileType.FILE)
    din = builder.read_inode(inum)
    din.size = 42
    din.addrs[0] = 77
    builder.write_inode(inum, din)
    assert builder.read_inode(inum) == din


def test_build_image_from_files(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "notes").write_bytes(b"some notes")
    build_image("fs.img", ["notes"])
    assert _read_file((tmp_path / "fs.img").read_bytes(), "/notes") == b"some notes"


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage: mkfs fs.img files..." in capsys.readouterr().err


def test_main_builds_image(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "_echo").write_bytes(b"echo body")
    assert main(["fs.img", "_echo"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("used ")
    assert "balloc: first" in out
    assert _read_file((tmp_path / "fs.img").read_bytes(), "/echo") == b"echo body"


def test_main_missing_input(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["fs.img", "absent"]) == 1