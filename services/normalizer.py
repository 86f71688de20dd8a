# services/normalizer.py
"""
Canonical keys for noisy, hand-typed receiver fields (name / phone / address).

Every function is pure and total: ``None`` or an empty string comes back as
``""``. Outputs are only meant for equality and substring comparison; they are
not reversible and are never shown to an operator.
"""
import re

# Long-form administrative units -> the short form carriers print on labels.
REGION_ABBREVIATIONS = [
    ("서울특별시", "서울"),
    ("부산광역시", "부산"),
    ("대구광역시", "대구"),
    ("인천광역시", "인천"),
    ("광주광역시", "광주"),
    ("대전광역시", "대전"),
    ("울산광역시", "울산"),
    ("세종특별자치시", "세종"),
    ("경기도", "경기"),
    ("강원특별자치도", "강원"),
    ("강원도", "강원"),
    ("충청북도", "충북"),
    ("충청남도", "충남"),
    ("전북특별자치도", "전북"),
    ("전라북도", "전북"),
    ("전라남도", "전남"),
    ("경상북도", "경북"),
    ("경상남도", "경남"),
    ("제주특별자치도", "제주"),
]
REDUNDANT_REGION_WORDS = ("광역시", "특별시", "특별자치")

# Unit / building / floor words. Anything from the first one onwards (after
# the street number) is a delivery detail, not part of the address key.
DETAIL_KEYWORDS = (
    "호실", "아파트", "오피스텔", "빌딩", "상가", "타워", "센터", "프라자",
    "빌라", "하우스", "맨션", "파크", "층", "호", "동", "실", "관",
)

BASIC_TITLES = (
    "고객", "팀장", "원장", "본부장", "로스터", "원두", "님", "씨",
    "선생님", "사장님", "대표님", "담당자", "사장",
)
ENHANCED_TITLES = (
    "고객", "팀장", "원장", "본부장", "실장", "과장", "대리", "사원", "매니저",
    "이사", "대표", "사장", "부장", "차장", "님", "씨", "선생님", "사장님",
    "대표님", "로스터", "원두", "담당자",
)
TRAILING_JOB_TITLES = ("실장", "과장", "대리", "팀장", "부장", "차장", "이사", "사원", "담당자", "사장")
CORPORATE_MARKERS = ("주식회사", "주)", "유한회사", "합자회사", "(주)")

MASK_CHAR = "*"

_WS_RE = re.compile(r"\s+")
_COMPACT_RE = re.compile(r"[\s\-()]")
_ADDRESS_PUNCT_RE = re.compile(r"[()\[\]{}.,:;'\"]")
_STREET_NUMBER_RE = re.compile(r"(?:로|길)\d+")
_FIRST_NUMBER_RE = re.compile(r"\d+")
_DETAIL_RE = re.compile("(?:" + "|".join(DETAIL_KEYWORDS) + ").*$")
_BEONGIL_TAIL_RE = re.compile(r"(\d+번길\d+)[가-힣].*$")
_HYPHEN_TAIL_RE = re.compile(r"(\d+-\d+)[가-힣].*$")

# Most specific first: 로123번길45, 로123-45, 로123
_BASE_ADDRESS_PATTERNS = (
    re.compile(r"(.*?(?:로|길)\d+번길\d+)"),
    re.compile(r"(.*?(?:로|길)\d+-\d+)"),
    re.compile(r"(.*?(?:로|길)\d+)"),
)

def _alternation(words) -> str:
    return "|".join(re.escape(w) for w in words)

_BASIC_TITLE_RE = re.compile(rf"\s*(?:{_alternation(BASIC_TITLES)})\**", re.IGNORECASE)
_ENHANCED_TITLE_RE = re.compile(rf"\s*(?:{_alternation(ENHANCED_TITLES)})\**", re.IGNORECASE)
_TRAILING_JOB_TITLE_RE = re.compile(rf"\s+(?:{_alternation(TRAILING_JOB_TITLES)})$")
_CORP_PREFIX_RE = re.compile(rf"^(?:{_alternation(CORPORATE_MARKERS)})\s*")
_CORP_SUFFIX_RE = re.compile(rf"\s*(?:{_alternation(CORPORATE_MARKERS)})$")


def normalize_compact(value) -> str:
    if not value:
        return ""
    return _COMPACT_RE.sub("", str(value)).lower()


def _strip_detail_suffix(address: str) -> str:
    # Only look for detail words after the street number, so that district
    # names such as 동안구 / 관악구 survive.
    anchor = _STREET_NUMBER_RE.search(address) or _FIRST_NUMBER_RE.search(address)
    if not anchor:
        return address
    head, tail = address[:anchor.end()], address[anchor.end():]
    return head + _DETAIL_RE.sub("", tail, count=1)


def normalize_address(address) -> str:
    if not address:
        return ""

    normalized = _WS_RE.sub(" ", str(address)).strip()

    for long_form, short_form in REGION_ABBREVIATIONS:
        normalized = normalized.replace(long_form, short_form)
    for word in REDUNDANT_REGION_WORDS:
        normalized = normalized.replace(word, "")

    normalized = _WS_RE.sub("", normalized)
    normalized = _ADDRESS_PUNCT_RE.sub("", normalized)  # hyphen is part of the address
    normalized = normalized.lower()

    normalized = _strip_detail_suffix(normalized)

    # 172번길42숨맑은집 -> 172번길42 ; 2278-13나 -> 2278-13
    if "번길" in normalized:
        normalized = _BEONGIL_TAIL_RE.sub(r"\1", normalized)
    if "-" in normalized:
        normalized = _HYPHEN_TAIL_RE.sub(r"\1", normalized)

    return normalized


def extract_base_address(address) -> str:
    """Coarse fallback key: the normalized address cut right after the road number."""
    normalized = normalize_address(address)
    for pattern in _BASE_ADDRESS_PATTERNS:
        m = pattern.search(normalized)
        if m:
            return m.group(1)
    return normalized


def normalize_name(name) -> str:
    if not name:
        return ""
    cleaned = str(name).strip()
    cleaned = _BASIC_TITLE_RE.sub("", cleaned)
    cleaned = cleaned.replace(MASK_CHAR, "").strip()
    return normalize_compact(cleaned)


def normalize_name_enhanced(name) -> str:
    if not name:
        return ""
    cleaned = str(name).strip()
    cleaned = _TRAILING_JOB_TITLE_RE.sub("", cleaned)
    cleaned = _ENHANCED_TITLE_RE.sub("", cleaned)
    cleaned = cleaned.replace(MASK_CHAR, "").strip()
    return normalize_compact(cleaned)


def normalize_company_name(name) -> str:
    if not name:
        return ""
    cleaned = _CORP_PREFIX_RE.sub("", str(name))
    cleaned = _CORP_SUFFIX_RE.sub("", cleaned).strip()
    return normalize_compact(cleaned)


def normalize_phone(phone) -> str:
    if not phone:
        return ""
    return _COMPACT_RE.sub("", str(phone))


def common_prefix_length(a: str, b: str) -> int:
    i = 0
    while i < len(a) and i < len(b) and a[i] == b[i]:
        i += 1
    return i


def are_names_similar_with_masking(name1, name2) -> bool:
    """
    Pairwise similarity for names the carrier may have partially masked
    (``박병*``). Not transitive; only use it to compare two names directly.
    """
    if not name1 or not name2:
        return False
    name1, name2 = str(name1), str(name2)

    clean1 = name1.replace(MASK_CHAR, "").strip()
    clean2 = name2.replace(MASK_CHAR, "").strip()
    if not clean1 or not clean2:
        return False

    if clean1 == clean2:
        return True

    if normalize_name_enhanced(clean1) == normalize_name_enhanced(clean2):
        return True

    if MASK_CHAR in name1 or MASK_CHAR in name2:
        base1, base2 = clean1.lower(), clean2.lower()
        shorter, longer = (base1, base2) if len(base1) < len(base2) else (base2, base1)
        return longer.startswith(shorter) or shorter in longer

    min_len = min(len(clean1), len(clean2))
    max_len = max(len(clean1), len(clean2))
    if min_len >= 3 and min_len / max_len >= 0.8:
        prefix = common_prefix_length(clean1.lower(), clean2.lower())
        if prefix >= min_len * 0.8:
            return True

    return False
