"""Impostor candidate generation.

Turns one legitimate domain into a ranked list of lookalike candidates with
a 1-99 confidence that a registration of the candidate is a deliberate
impersonation. Each rule carries a base penalty; short names get an extra
length penalty because small edits to them usually land on unrelated sites.

Rules (base penalty):
    tld-swap (5), homoglyph (1), adjacent-key (15), omission (25),
    repetition (20), transposition (10), keyword (2)
"""

import logging
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

import idna

logger = logging.getLogger(__name__)

SWAP_TLDS = ['com', 'org', 'net', 'co', 'info', 'biz', 'us', 'io']

# Latin letter -> Cyrillic lookalike
HOMOGLYPHS = {
    'a': 'а',
    'e': 'е',
    'o': 'о',
}

# QWERTY neighbours
ADJACENT_KEYS = {
    'q': 'was', 'w': 'qeasd', 'e': 'wrsdf', 'r': 'etdfg', 't': 'ryfgh',
    'y': 'tughj', 'u': 'yihjk', 'i': 'uojkl', 'o': 'ipkl', 'p': 'ol',
    'a': 'qwszx', 's': 'qweadzxc', 'd': 'wersfxcv', 'f': 'ertdgcvb',
    'g': 'rtyfhvbn', 'h': 'tyugjbnm', 'j': 'yuihknm', 'k': 'uiojlm',
    'l': 'iopk', 'z': 'asx', 'x': 'asdzc', 'c': 'sdfxv', 'v': 'dfgcb',
    'b': 'fghvn', 'n': 'ghjbm', 'm': 'hjkn',
}

KEYWORD_PREFIXES = ['login-', 'secure-', 'auth-', 'account-']
KEYWORD_SUFFIXES = ['-support', '-help']

PENALTY_TLD_SWAP = 5
PENALTY_HOMOGLYPH = 1
PENALTY_ADJACENT_KEY = 15
PENALTY_OMISSION = 25
PENALTY_REPETITION = 20
PENALTY_TRANSPOSITION = 10
PENALTY_KEYWORD = 2

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 99


class ImpostorCandidate(NamedTuple):
    impostor: str
    confidence: int


def length_penalty(basename: str) -> int:
    """Extra penalty for short names. Names of seven or more characters carry none."""
    length = len(basename)
    if length <= 3:
        return 40
    if length <= 5:
        return 20
    if length < 7:
        return 10
    return 0


def confidence_for(penalty: int, basename: str) -> int:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, 100 - penalty - length_penalty(basename)))


def _is_valid_hostname(candidate: str) -> bool:
    if not candidate or len(candidate) > 253:
        return False
    for label in candidate.split('.'):
        if not label or len(label) > 63:
            return False
        if label.startswith('-') or label.endswith('-'):
            return False
    return True


def _tld_swaps(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for swap in SWAP_TLDS:
        if swap != tld:
            yield f"{basename}.{swap}", PENALTY_TLD_SWAP


def _homoglyphs(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for letter, lookalike in HOMOGLYPHS.items():
        if letter in basename:
            yield f"{basename.replace(letter, lookalike)}.{tld}", PENALTY_HOMOGLYPH


def _adjacent_keys(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for i, char in enumerate(basename):
        for neighbour in ADJACENT_KEYS.get(char, ''):
            yield f"{basename[:i]}{neighbour}{basename[i + 1:]}.{tld}", PENALTY_ADJACENT_KEY


def _omissions(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    if len(basename) <= 3:
        return
    for i in range(len(basename)):
        yield f"{basename[:i]}{basename[i + 1:]}.{tld}", PENALTY_OMISSION


def _repetitions(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for i, char in enumerate(basename):
        yield f"{basename[:i]}{char}{basename[i:]}.{tld}", PENALTY_REPETITION


def _transpositions(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for i in range(len(basename) - 1):
        swapped = basename[:i] + basename[i + 1] + basename[i] + basename[i + 2:]
        yield f"{swapped}.{tld}", PENALTY_TRANSPOSITION


def _keywords(basename: str, tld: str) -> Iterator[Tuple[str, int]]:
    for prefix in KEYWORD_PREFIXES:
        yield f"{prefix}{basename}.{tld}", PENALTY_KEYWORD
    for suffix in KEYWORD_SUFFIXES:
        yield f"{basename}{suffix}.{tld}", PENALTY_KEYWORD


RULES = [
    _tld_swaps,
    _homoglyphs,
    _adjacent_keys,
    _omissions,
    _repetitions,
    _transpositions,
    _keywords,
]


def _to_ascii(domain: str) -> Optional[str]:
    """IDNA transport form of a domain, or None if it cannot be encoded."""
    if domain.isascii():
        return domain
    try:
        return idna.encode(domain, uts46=True).decode('ascii')
    except idna.IDNAError as e:
        logger.debug(f"Cannot punycode-encode {domain!r}: {e}")
        return None


def _to_unicode(domain: str) -> str:
    """Unicode form of an ``xn--`` domain; anything else comes back unchanged."""
    if 'xn--' not in domain:
        return domain
    try:
        return idna.decode(domain)
    except UnicodeError as e:
        logger.debug(f"Cannot decode {domain!r}: {e}")
        return domain


def normalize_domain(domain: str) -> str:
    """Lowercase ASCII form used as the document key. Empty if the name cannot be encoded."""
    domain = (domain or '').strip().lower().rstrip('.')
    return _to_ascii(domain) or ''


def generate_impostors(domain: str) -> List[ImpostorCandidate]:
    """Generate ranked impostor candidates for a domain.

    Args:
        domain: Legitimate root domain such as ``example.com``

    Returns:
        Candidates sorted by descending confidence, then name. Empty if the
        domain has fewer than two labels. The input itself never appears and
        each candidate appears once, with the highest confidence any rule gave it.
        Internationalized names are edited in Unicode and every candidate is
        returned in its ASCII (punycode) form.
    """
    domain = normalize_domain(domain)
    labels = _to_unicode(domain).split('.')
    if len(labels) < 2 or not all(labels):
        return []

    basename = '.'.join(labels[:-1])
    tld = labels[-1]

    best: Dict[str, int] = {}
    for rule in RULES:
        for spelled, penalty in rule(basename, tld):
            candidate = _to_ascii(spelled)
            if candidate is None or candidate == domain or not _is_valid_hostname(candidate):
                continue
            confidence = confidence_for(penalty, basename)
            if confidence > best.get(candidate, 0):
                best[candidate] = confidence

    ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))
    logger.debug(f"Generated {len(ranked)} impostor candidates for {domain}")
    return [ImpostorCandidate(impostor, confidence) for impostor, confidence in ranked]
