"""parsers package

One parser per log family plus the priority-ordered registry that picks one.
"""

from parsers.base import LogParser
from parsers.registry import ParserRegistry, default_registry

__all__ = ["LogParser", "ParserRegistry", "default_registry"]
