"""Stop name normalization and the searchable stop index."""

from pid_board.matching.normalizers import normalize_text, remove_accents
from pid_board.matching.stop_index import StopIndex, build_stop_groups

__all__ = [
    # Index
    "StopIndex",
    "build_stop_groups",
    # Normalizers
    "normalize_text",
    "remove_accents",
]
