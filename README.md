# xv6kit

A pure-Python toolkit for the xv6 on-disk file system: build images,
load them into memory, and read, write and list files in them.

## Modules

- `xv6kit.layout`: kernel parameters, the on-disk structures
  (`Superblock`, `DiskInode`, `Dirent`) with `pack()` and `from_bytes()`,
  `Stat`, the `FileType` enum, the `iblock` and `bblock` helpers, and the
  errors `KernelPanic` and `FsError`.
- `xv6kit.disk`: `Disk`, an image held in memory (`from_file`, `save`,
  `read_sector`, `write_sector`), and `BufferCache`, a fixed set of block
  buffers that reuses the least recently released one.
- `xv6kit.journal`: `Log`, the redo log. It recovers a committed
  transaction on start-up and offers `begin`, `commit`, `write` and a
  `transaction()` context manager.
- `xv6kit.filesystem`: `FileSystem` and `Inode`: block and inode
  allocation, the inode cache and its locks, block mapping, reading and
  writing file contents, directory lookup and linking, and path lookup
  (`namei`, `nameiparent`). Also `skipelem` and `namecmp`.
- `xv6kit.files`: `FileTable` of open `File`s over a file system, and
  `Pipe`, a bounded byte channel.
- `xv6kit.mkfs`: `ImageBuilder` and `build_image` for creating new images.
- `xv6kit.console`: `format_int`, `user_format` and `kernel_format`
  (the `%d %x %p %s` printf formats), `CgaScreen`, an 80x25 text screen,
  and `Console`, which echoes output and edits input lines
  (backspace, Control-U, Control-D).
- `xv6kit.keyboard`: `Keyboard`, a PC scan code decoder that tracks
  Shift, Control and Caps Lock.
- `xv6kit.grep`: the `^ . * $` matcher (`match`, `match_here`,
  `match_star`) and `grep_lines`.
- `xv6kit.commands`: `ls`, `cat` and `echo`, working on an image.

## Installing

    pip install .

## Command line

Build an image from files in the current directory (a leading `_` in a
file name is dropped inside the image):

    xv6-mkfs fs.img README _cat

Print the lines of files, or of standard input, that match a pattern:

    xv6-grep 'ab*c$' notes.txt

List or print files in an image, or echo arguments:

    xv6-cmd ls fs.img /
    xv6-cmd cat fs.img /README
    xv6-cmd echo hello world

`ls` with no path lists `.`, the root directory; `cat` with no file
copies standard input.

## Library use

    from xv6kit.mkfs import build_image
    from xv6kit.disk import Disk, BufferCache
    from xv6kit.filesystem import FileSystem

    build_image("fs.img", ["hello"])       # reads ./hello
    disk = Disk.from_file("fs.img", 1)
    fs = FileSystem(BufferCache(disk, 10), 1, 50)
    ip = fs.namei("/hello", None)
    fs.lock(ip)
    print(fs.read(ip, 0, ip.size))
    fs.unlock_put(ip)
    disk.save("fs.img")

Changes to file contents go through the log, so wrap them in
`with fs.log.transaction():`. Inconsistencies that the kernel code
treats as fatal raise `KernelPanic`; ordinary failures raise `FsError`.

## What it does not do

There is no shell, process table or system-call layer. The commands only
read images; there is no command to create directories, remove files or
add files to an existing image. Doing that means calling `FileSystem`
methods such as `alloc_inode` and `link` directly.

## Tests

    pip install .[test]
    pytest