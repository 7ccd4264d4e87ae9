from typing import Iterable, List

import numpy as np

AMINO_ACIDS = "ACDEFGHIKLMNPQRSTVWY"
ALPHABET_SIZE = len(AMINO_ACIDS)
UNKNOWN_CODE = ALPHABET_SIZE

_ENCODE_TABLE = bytearray([UNKNOWN_CODE] * 256)
for _code, _char in enumerate(AMINO_ACIDS.encode("ascii")):
    _ENCODE_TABLE[_char] = _code

_DECODER = np.array(list(AMINO_ACIDS) + ["X"], dtype="U1")


class RaggedData:
    """
    Class for storing ragged (variable-length) integer-encoded CDR3 sequences.

    Sequences are kept in one flat array with an offsets vector, so the
    numba kernels can walk all sequences of an analysis group without padding.
    """

    def __init__(self, data: np.ndarray, offsets: np.ndarray):
        self.data = data
        self.offsets = offsets

    def get_length(self, i: int) -> int:
        """Return the length of the i-th sequence."""
        return int(self.offsets[i + 1] - self.offsets[i])

    def get_slice(self, i: int) -> np.ndarray:
        """Return a slice of data for the i-th sequence (view)."""
        return self.data[self.offsets[i] : self.offsets[i + 1]]

    def lengths(self) -> np.ndarray:
        """Return the lengths of all sequences."""
        return np.diff(self.offsets)

    def total_elements(self) -> int:
        return self.data.size

    @property
    def num_sequences(self) -> int:
        return self.offsets.size - 1


def ragged_from_list(data_list: List[np.ndarray], dtype=None) -> RaggedData:
    """Create RaggedData from a list of numpy arrays."""
    if len(data_list) == 0:
        return RaggedData(np.empty(0, dtype=dtype if dtype else np.int8), np.zeros(1, dtype=np.int64))

    if dtype is None:
        dtype = data_list[0].dtype

    lengths = np.fromiter((len(item) for item in data_list), dtype=np.int64, count=len(data_list))
    offsets = np.zeros(len(data_list) + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(lengths)

    data = np.empty(offsets[-1], dtype=dtype)
    for i, item in enumerate(data_list):
        data[offsets[i] : offsets[i + 1]] = item

    return RaggedData(data, offsets)


def encode_sequence(sequence: str) -> np.ndarray:
    """Encode an amino-acid string; unknown residues map to ``UNKNOWN_CODE``."""
    return np.frombuffer(sequence.encode("ascii", errors="replace").translate(_ENCODE_TABLE), dtype=np.int8).copy()


def encode_sequences(sequences: Iterable[str]) -> RaggedData:
    """Encode CDR3 amino-acid strings into a RaggedData container."""
    return ragged_from_list([encode_sequence(seq) for seq in sequences], dtype=np.int8)


def decode_sequence(seq_int: np.ndarray) -> str:
    """Convert an integer-encoded sequence back to its amino-acid string."""
    safe_seq = np.clip(seq_int, 0, UNKNOWN_CODE)
    return "".join(_DECODER[safe_seq])


def is_canonical(sequence: str) -> bool:
    """Return True for a non-empty string made only of the 20 canonical residues."""
    if not isinstance(sequence, str) or not sequence:
        return False
    return UNKNOWN_CODE not in encode_sequence(sequence)
