[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xv6kit"
version = "0.1.0"
description = "Build, mount and explore xv6 file system images in pure Python"
requires-python = ">=3.10"
dependencies = []
keywords = ["xv6", "filesystem", "disk-image", "mkfs", "journal"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xv6-mkfs = "xv6kit.mkfs:main"
xv6-grep = "xv6kit.grep:main"
xv6-cmd = "xv6kit.commands:main"

[tool.hatch.build.targets.wheel]
packages = ["xv6kit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
