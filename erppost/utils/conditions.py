"""
Behavioural condition codes of the flanker study.

Codes are three-digit integers: the first digit is the social context
(1 = social, 2 = non-social), the second the target visibility (1 = visible,
0 = invisible) and the third the response type. Compound codes collapse two
base codes and never occur in the raw epoch metadata.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

# Base codes, in the column order used by every table in the reports.
BASE_CODES: Tuple[int, ...] = (111, 112, 113, 102, 104, 211, 212, 213, 202, 204)

# Collapsed visible-error codes: flanker error + non-flanker error.
COMPOUND_CODES: Dict[int, Tuple[int, ...]] = {
    110: (112, 113),
    210: (212, 213),
}

DEFAULT_CODES: Tuple[int, ...] = BASE_CODES + tuple(COMPOUND_CODES)

CODE_NAMES: Dict[int, str] = {
    111: "social_vis_corr",
    112: "social_vis_FE",
    113: "social_vis_NFE",
    102: "social_invis_FE",
    104: "social_invis_NFG",
    211: "nonsoc_vis_corr",
    212: "nonsoc_vis_FE",
    213: "nonsoc_vis_NFE",
    202: "nonsoc_invis_FE",
    204: "nonsoc_invis_NFG",
    110: "social_vis_error",
    210: "nonsoc_vis_error",
}

# Tier-1 conditions (invisible targets): all-or-nothing for dataset inclusion.
PRIMARY_CODES: Tuple[int, ...] = (102, 104, 202, 204)

VISIBLE_TARGET_CODES: Tuple[int, ...] = (111, 112, 113, 211, 212, 213)
VISIBLE_ERROR_CODES: Tuple[int, ...] = (112, 113, 212, 213)

# responseType values in the behavioural log
RESPONSE_MULTIPLE_KEYS = 7
RESPONSE_TOO_SLOW = 8


def code_name(code: int) -> str:
    """Human-readable name of a code, falling back to ``code_<n>``."""
    return CODE_NAMES.get(int(code), f"code_{int(code)}")


def base_codes_for(code: int, compound: Mapping[int, Sequence[int]] = COMPOUND_CODES) -> Tuple[int, ...]:
    """Return the base codes whose trials make up ``code``."""
    code = int(code)
    if code in compound:
        return tuple(int(c) for c in compound[code])
    return (code,)


def trials_for_code(codes: np.ndarray, code: int,
                    compound: Mapping[int, Sequence[int]] = COMPOUND_CODES) -> np.ndarray:
    """Indices (into the epoch sequence) of the trials belonging to ``code``."""
    codes = np.asarray(codes)
    return np.flatnonzero(np.isin(codes, base_codes_for(code, compound)))


def normalize_code_map(mapping: Mapping | None) -> Dict[int, int]:
    """
    Coerce a ``{code: value}`` mapping read from JSON/YAML (string keys) into
    integer keys and values.
    """
    if not mapping:
        return {}
    out: Dict[int, int] = {}
    for key, value in mapping.items():
        try:
            out[int(key)] = int(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid code mapping entry {key!r}: {value!r}") from e
    return out


def normalize_codes(codes: Iterable | None) -> List[int]:
    """Integer list of codes with duplicates removed (first occurrence kept)."""
    if codes is None:
        return list(DEFAULT_CODES)
    out: List[int] = []
    for c in codes:
        c = int(c)
        if c not in out:
            out.append(c)
    return out
