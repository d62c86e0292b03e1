"""
Module for the nucleotide alphabet used by direct-repeat clustering.

Sequences are handled as ``str`` at the API level and encoded to ``uint8`` arrays (A=0, C=1, G=2, T=3,
anything else=4) for the alignment kernels and coverage counting.
"""
from enum import IntEnum
from typing import Final, Iterable, Iterator, Optional

import numpy as np


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class AlphabetError(Exception):
    """Raised when a sequence cannot be handled by the nucleotide alphabet."""


# Classes --------------------------------------------------------------------------------------------------------------
class Nucleotide(IntEnum):
    """Row index of each base in coverage matrices and 4-slot option arrays."""
    A = 0
    C = 1
    G = 2
    T = 3

    @property
    def char(self) -> str: return self.name

    @classmethod
    def from_char(cls, char: str) -> 'Nucleotide':
        """
        Returns the nucleotide for a single character (case-insensitive).

        Raises:
            AlphabetError: If ``char`` is not one of ACGT.
        """
        try: return cls[char.upper()]
        except KeyError: raise AlphabetError(f'Not a nucleotide: {char!r}') from None

    @classmethod
    def lookup(cls, char: str) -> Optional['Nucleotide']:
        """Returns the nucleotide for a single character, or ``None`` for an ambiguous symbol."""
        return cls.__members__.get(char.upper())


# Constants ------------------------------------------------------------------------------------------------------------
SYMBOLS: Final = 'ACGT'
AMBIGUOUS: Final = 4
_COMPLEMENT: Final = str.maketrans('ACGTNacgtn', 'TGCANtgcan')
_LOOKUP_TABLE = np.full(256, AMBIGUOUS, dtype=np.uint8)
for _i, _c in enumerate(SYMBOLS):
    _LOOKUP_TABLE[ord(_c)] = _i
    _LOOKUP_TABLE[ord(_c.lower())] = _i
_LOOKUP_TABLE.flags.writeable = False


# Functions ------------------------------------------------------------------------------------------------------------
def encode(seq: str) -> np.ndarray:
    """
    Encodes a sequence into nucleotide indices.

    Args:
        seq: The sequence to encode.

    Returns:
        A ``uint8`` array with A=0, C=1, G=2, T=3 and 4 for any other symbol.

    Examples:
        >>> encode('ACGTN').tolist()
        [0, 1, 2, 3, 4]
    """
    return _LOOKUP_TABLE[np.frombuffer(seq.encode('ascii'), dtype=np.uint8)]


def encode_reverse_complement(encoded: np.ndarray) -> np.ndarray:
    """Reverse-complements an encoded sequence, keeping ambiguous symbols ambiguous."""
    rev = encoded[::-1].copy()
    mask = rev != AMBIGUOUS
    rev[mask] = 3 - rev[mask]
    return rev


def reverse_complement(seq: str) -> str:
    """
    Returns the reverse complement of a sequence.

    Examples:
        >>> reverse_complement('AACG')
        'CGTT'
    """
    return seq.translate(_COMPLEMENT)[::-1]


def laurenize(seq: str) -> str:
    """
    Returns the strand-independent canonical form of a sequence.

    The canonical form is the lexicographically smaller of the sequence and its reverse complement, so
    identical repeats read from opposite strands compare equal.

    Examples:
        >>> laurenize('TTGC') == laurenize('GCAA')
        True
    """
    rc = reverse_complement(seq)
    return rc if rc < seq else seq


def spell(codes: Iterable[int]) -> str:
    """
    Spells out a run of nucleotide indices.

    Examples:
        >>> spell([0, 3, 3])
        'ATT'
    """
    return ''.join(Nucleotide(int(code)).char for code in codes)


def cut_kmers(seq: str, k: int) -> Iterator[str]:
    """Yields every k-mer of ``seq`` from left to right."""
    for i in range(len(seq) - k + 1): yield seq[i:i + k]


def base_composition(seq: str) -> np.ndarray:
    """Returns the counts of A, C, G, T (in that order) in a sequence."""
    return np.bincount(encode(seq), minlength=AMBIGUOUS + 1)[:AMBIGUOUS]


def is_low_complexity(seq: str, threshold: float = 0.75) -> bool:
    """
    Flags sequences dominated by a single base.

    Args:
        seq: The sequence to test.
        threshold: Maximum share of the sequence any one base may take.

    Returns:
        True if any of A, C, G, T makes up more than ``threshold`` of the sequence.
    """
    if not seq: return False
    return bool(np.any(base_composition(seq) / len(seq) > threshold))
