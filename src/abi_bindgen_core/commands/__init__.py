from .embedding import command_embed
from .extraction import command_inspect
from .generation import command_generate

__all__ = [
    "command_embed",
    "command_generate",
    "command_inspect",
]
