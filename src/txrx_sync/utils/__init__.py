"""
Utility functions and helpers.
"""

from .iq import (
    file_num_samples,
    load_cf32,
    load_files_to_buffer,
    save_cf32,
    write_buffer_to_files,
)

__all__ = [
    "file_num_samples",
    "load_cf32",
    "save_cf32",
    "load_files_to_buffer",
    "write_buffer_to_files",
]
