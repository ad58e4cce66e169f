"""Build, load and explore xv6 file system images."""

__version__ = "0.1.0"

__all__ = [
    "layout",
    "disk",
    "journal",
    "filesystem",
    "files",
    "mkfs",
    "console",
    "keyboard",
    "grep",
    "commands",
]