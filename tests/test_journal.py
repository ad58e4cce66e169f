import struct

import pytest

from xv6kit.disk import BufferCache, Disk
from xv6kit.journal import Log
from xv6kit.layout import BSIZE, LOGSIZE, ROOTDEV, KernelPanic, Superblock

SIZE = 40
NLOG = LOGSIZE


def blank_disk():
    img = bytearray(SIZE * BSIZE)
    img[BSIZE:BSIZE + 16] = Superblock(SIZE, 20, 8, NLOG).pack()
    return Disk(bytes(img))


def modify(cache, log, sector, fill):
    buf = cache.read(ROOTDEV, sector)
    buf.data[:] = fill * BSIZE
    log.write(buf)
    cache.release(buf)


def test_log_position_comes_from_superblock():
    cache = BufferCache(blank_disk())
    log = Log(cache)
    assert log.start == SIZE - NLOG
    assert log.size == NLOG
    assert log.sectors == []


def test_explicit_superblock_is_used():
    cache = BufferCache(blank_disk())
    log = Log(cache, ROOTDEV, Superblock(SIZE, 20, 8, NLOG))
    assert log.start == SIZE - NLOG


def test_commit_installs_blocks():
    disk = blank_disk()
    cache = BufferCache(disk)
    log = Log(cache)
    with log.transaction():
        modify(cache, log, 5, b"a")
    assert disk.read_sector(5) == b"a" * BSIZE
    assert log.sectors == []


def test_home_block_untouched_before_commit():
    disk = blank_disk()
    cache = BufferCache(disk)
    log = Log(cache)
    log.begin()
    modify(cache, log, 7, b"q")
    assert disk.read_sector(7) == bytes(BSIZE)
    assert disk.read_sector(log.start + 1) == b"q" * BSIZE
    log.commit()
    assert disk.read_sector(7) == b"q" * BSIZE


def test_header_is_cleared_after_commit():
    disk = blank_disk()
    cache = BufferCache(disk)
    log = Log(cache)
    with log.transaction():
        modify(cache, log, 5, b"a")
    assert struct.unpack_from("<i", disk.read_sector(log.start))[0] == 0


def test_absorption_keeps_one_entry():
    cache = BufferCache(blank_disk())
    log = Log(cache)
    log.begin()
    modify(cache, log, 5, b"a")
    modify(cache, log, 5, b"b")
    assert log.sectors == [5]
    log.commit()
    assert cache.disk.read_sector(5) == b"b" * BSIZE


def test_write_outside_transaction_panics():
    cache = BufferCache(blank_disk())
    log = Log(cache)
    buf = cache.read(ROOTDEV, 5)
    with pytest.raises(KernelPanic, match="write outside of trans"):
        log.write(buf)


def test_too_big_transaction_panics():
    cache = BufferCache(blank_disk())
    log = Log(cache)
    log.begin()
    for sector in range(2, 2 + NLOG - 1):
        modify(cache, log, sector, b"x")
    assert len(log.sectors) == NLOG - 1
    buf = cache.read(ROOTDEV, 20)
    with pytest.raises(KernelPanic, match="too big a transaction"):
        log.write(buf)


def test_recovery_installs_committed_header():
    disk = blank_disk()
    start = SIZE - NLOG
    header = struct.pack(f"<i{LOGSIZE}i", 1, 20, *([0] * (LOGSIZE - 1)))
    disk.write_sector(start, header + bytes(BSIZE - len(header)))
    disk.write_sector(start + 1, b"x" * BSIZE)
    Log(BufferCache(disk))
    assert disk.read_sector(20) == b"x" * BSIZE
    assert struct.unpack_from("<i", disk.read_sector(start))[0] == 0


def test_transaction_ends_on_exception():
    cache = BufferCache(blank_disk())
    log = Log(cache)
    with pytest.raises(RuntimeError):
        with log.transaction():
            assert log.in_transaction
            raise RuntimeError("boom")
    assert not log.in_transaction
    with log.transaction():
        modify(cache, log, 3, b"c")
    assert cache.disk.read_sector(3) == b"c" * BSIZE


def test_empty_commit_leaves_disk_alone():
    disk = blank_disk()
    before = bytes(disk.image)
    log = Log(BufferCache(disk))
    after_init = bytes(disk.image)
    with log.transaction():
        pass
    assert bytes(disk.image) == after_init
    assert before[:BSIZE * 2] == after_init[:BSIZE * 2]