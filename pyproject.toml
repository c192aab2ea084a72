[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "atrtools"
version = "1.0.0"
description = "Atari DOS 2 disk image tools: list, extract, write and check files, convert between ATR and IMD, detokenize Mac65 source"
requires-python = ">=3.10"
dependencies = []
keywords = ["atari", "atr", "imd", "imagedisk", "dos2", "disk-image", "mac65", "retrocomputing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Emulators",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
atr = "atrtools.cli:main"
atr2imd = "atrtools.atr2imd:main"
imd2atr = "atrtools.imd2atr:main"
detok = "atrtools.detok:main"

[tool.hatch.build.targets.wheel]
packages = ["atrtools"]

[tool.pytest.ini_options]
addopts = "-ra"
