"""CLI module - Command-line interface components."""

from named_lock.cli.main import main
from named_lock.cli.parser import parse_arguments

__all__ = [
    "main",
    "parse_arguments",
]
