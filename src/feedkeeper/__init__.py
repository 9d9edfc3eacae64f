"""feedkeeper - 个人 RSS/Atom 阅读器核心."""

__version__ = "0.1.0"
