from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from services.normalize_service import clean_text, normalize_text, row_value


CATEGORIES = ("video", "sound", "lighting", "grip", "uncategorised")
UNCATEGORISED = "uncategorised"

# Curated lists are consulted in this order; the first list that matches wins.
LIST_PRIORITY = ("video", "sound", "lighting", "grip")

CATEGORY_HINT_FIELDS = (
    "assetcategoryname",
    "categoryname",
    "assetcategory",
    "category",
    "assettypecategory",
    "groupname",
    "department",
    "parentcategory",
    "subcategory",
)

# Lighting fixtures that upstream files under grip/support. Must run before metadata.
STRONG_LIGHTING_PATTERNS = [
    re.compile(r"\bpavo ?tubes?\b"),
    re.compile(r"\btube ?lights?\b"),
    re.compile(r"\blight ?domes?\b"),
    re.compile(r"\blanterns?\b"),
    re.compile(r"\b(led ?mat|lite ?mat|flex ?mat)s?\b"),
    re.compile(r"\baputure\b.*\b(ls|mc|nova|lightstorm|\d{2,4}[dx])\b"),
    re.compile(r"\bamaran\b"),
    re.compile(r"\bnanlite\b"),
    re.compile(r"\bgodox\b.*\b(sl|ml|lc|ul|tl|tp)[ -]?\d+"),
    re.compile(r"\bkino ?flo\b"),
    re.compile(r"\bdedo ?(light|lite)\b"),
    re.compile(r"\bastera\b"),
    re.compile(r"\bfresnel\b"),
]

# (category, stems matched anywhere in a hint, short words matched only as whole tokens).
# Short words sit inside unrelated terms ("microsoft", "clamp", "standard").
METADATA_SYNONYMS: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    ("lighting", ("lighting", "luminaire"), ("light", "lights", "led", "leds", "lamp", "lamps")),
    ("video", ("video", "camera", "cinema", "camcorder", "monitor"), ("lens", "lenses")),
    ("sound", ("audio", "sound", "microphone", "recorder"), ("mic", "mics")),
    ("grip", ("grip", "tripod", "support", "rigging", "dolly", "slider"), ("stand", "stands")),
]

KEYWORD_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "video",
        re.compile(
            r"\b(cameras?|cam|camcorders?|lens(es)?|dslr|mirrorless|gopro|cine|blackmagic|bmpcc|"
            r"fx[0-9]+|a7 ?[a-z0-9]*|c[0-9]{2,3}|monitors?|viewfinder|teleprompter)\b"
        ),
    ),
    (
        "sound",
        re.compile(
            r"\b(mics?|microphones?|recorders?|lav|lavs|lavalier|radio ?mic|boom ?pole|shotgun|"
            r"headphones?|mixer|audio|zoom h[0-9]+|rode|sennheiser|tascam)\b"
        ),
    ),
    ("lighting", re.compile(r"\b(lights?(?! ?stands?\b)|led|lamps?|softbox(es)?|panel ?lights?|reflectors?)\b")),
    (
        "grip",
        re.compile(
            r"\b(tripods?|monopods?|stands?|c-?stands?|sliders?|gimbals?|clamps?|sandbags?|"
            r"dolly|dollies|magic arms?|rigs?|shoulder rigs?)\b"
        ),
    ),
]


_WORDS = re.compile(r"[^\W_]+")


@dataclass
class CuratedIndex:
    """Normalized curated lists: per-list sets for exact hits, ordered entries for fuzzy scans."""

    exact: dict[str, set[str]] = field(default_factory=dict)
    entries: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_lists(cls, lists: Mapping[str, Any] | None) -> "CuratedIndex":
        index = cls()
        for name in LIST_PRIORITY:
            raw_entries = (lists or {}).get(name) or []
            if not isinstance(raw_entries, (list, tuple, set)):
                raw_entries = []
            normalized: list[str] = []
            for entry in raw_entries:
                key = normalize_text(entry)
                if key and key not in normalized:
                    normalized.append(key)
            index.exact[name] = set(normalized)
            index.entries[name] = normalized
        return index

    def match_exact(self, asset_key: str) -> str | None:
        if not asset_key:
            return None
        for name in LIST_PRIORITY:
            if asset_key in self.exact.get(name, ()):
                return name
        return None

    def match_fuzzy(self, asset_key: str) -> str | None:
        if not asset_key:
            return None
        for name in LIST_PRIORITY:
            for entry in self.entries.get(name, []):
                if entry in asset_key or asset_key in entry:
                    return name
        return None


@dataclass(frozen=True)
class CategoryDecision:
    category: str
    source: str


def build_override_index(override_map: Mapping[str, Any] | None) -> dict[str, str]:
    index: dict[str, str] = {}
    for raw_key, raw_value in (override_map or {}).items():
        key = normalize_text(raw_key)
        value = normalize_text(raw_value)
        if key and value in CATEGORIES:
            index[key] = value
    return index


def collect_category_hints(row: Mapping[str, Any]) -> str:
    """Hint fields as lower-case words; any punctuation separates words ("Audio/Video" -> "audio video")."""
    words: list[str] = []
    for name in CATEGORY_HINT_FIELDS:
        words.extend(_WORDS.findall(clean_text(row_value(row, name)).lower()))
    return " ".join(words)


def match_strong_lighting(asset_key: str) -> bool:
    return any(pattern.search(asset_key) for pattern in STRONG_LIGHTING_PATTERNS)


def match_metadata(hints: str) -> str | None:
    if not hints:
        return None
    words = set(hints.split())
    for category, stems, short_words in METADATA_SYNONYMS:
        if words.intersection(short_words) or any(stem in hints for stem in stems):
            return category
    return None


def match_keywords(asset_key: str) -> str | None:
    if not asset_key:
        return None
    for category, pattern in KEYWORD_PATTERNS:
        if pattern.search(asset_key):
            return category
    return None


def explain_category(
    row: Mapping[str, Any],
    override_index: Mapping[str, str],
    curated: CuratedIndex,
    asset_name: Any = None,
) -> CategoryDecision:
    name = asset_name if asset_name is not None else row_value(row, "assetname")
    asset_key = normalize_text(name)

    if asset_key and asset_key in override_index:
        return CategoryDecision(override_index[asset_key], "override")

    listed = curated.match_exact(asset_key)
    if listed:
        return CategoryDecision(listed, "list-exact")

    listed = curated.match_fuzzy(asset_key)
    if listed:
        return CategoryDecision(listed, "list-fuzzy")

    if asset_key and match_strong_lighting(asset_key):
        return CategoryDecision("lighting", "strong-pattern")

    from_metadata = match_metadata(collect_category_hints(row))
    if from_metadata:
        return CategoryDecision(from_metadata, "metadata")

    from_keywords = match_keywords(asset_key)
    if from_keywords:
        return CategoryDecision(from_keywords, "keyword")

    return CategoryDecision(UNCATEGORISED, "default")


def resolve_category(
    row: Mapping[str, Any],
    override_map: Mapping[str, Any] | None,
    curated_lists: Mapping[str, Any] | CuratedIndex | None,
) -> str:
    curated = curated_lists if isinstance(curated_lists, CuratedIndex) else CuratedIndex.from_lists(curated_lists)
    return explain_category(row, build_override_index(override_map), curated).category
