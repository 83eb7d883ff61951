"""Readers for POS export files."""

from .file_reader import read_export

__all__ = ["read_export"]
