[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bootkit"
version = "0.1.0"
description = "Boot-loader support routines: ELF loading, partition tables, GUIDs, wallpaper images and console helpers"
requires-python = ">=3.10"
keywords = ["bootloader", "elf", "gpt", "mbr", "guid", "framebuffer", "kaslr"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["bootkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
