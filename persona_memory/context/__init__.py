"""Context assembly exports."""

from .assembler import ContextAssembler, assemble_context, estimate_tokens

__all__ = ["ContextAssembler", "assemble_context", "estimate_tokens"]
