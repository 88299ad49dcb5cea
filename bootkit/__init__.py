"""Boot-loader support routines: ELF loading, partition tables, GUIDs, images and console helpers."""

__version__ = "0.1.0"

__all__ = [
    "elf",
    "elsewhere",
    "fmt",
    "guid",
    "image",
    "keys",
    "part",
    "rand",
    "rtc",
    "strutil",
]