[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xvfs"
version = "0.1.0"
description = "A small Unix-style file system: image builder, block cache, redo log, inodes, directories, pipes, console and tools"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "disk image", "journaling", "mkfs", "grep", "teaching"]
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
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xvfs-mkfs = "xvfs.mkfs:main"
xvfs-grep = "xvfs.grep:main"
xvfs = "xvfs.commands:main"

[tool.hatch.build.targets.wheel]
packages = ["xvfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
