[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chunkfs"
version = "0.1.0"
description = "A small distributed file store that splits files into four chunks mirrored across four servers"
requires-python = ">=3.10"
dependencies = []
keywords = ["distributed", "file-storage", "chunks", "replication", "tcp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
chunkfs-client = "chunkfs.client:main"
chunkfs-server = "chunkfs.server:main"

[tool.hatch.build.targets.wheel]
packages = ["chunkfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
