"""
Staged upload storage used by the conversion pipeline.
"""
from .temp_files import TempFileManager, staged_file_name

__all__ = ["TempFileManager", "staged_file_name"]
