"""
Attribute extraction from free-text device descriptions.

The keyword tables and specification rules are plain data: an ordered list
of ``(label, keywords)`` pairs and an ordered list of ``SpecRule``.  Pass
different tables to ``extract_attributes`` to add categories without touching
the scoring code.  Table order matters: on a tie the first label wins.
"""
import re
from typing import Callable, NamedTuple, Optional, Sequence

from schemas import AttributeSuggestion

KeywordTable = Sequence[tuple[str, Sequence[str]]]


class SpecRule(NamedTuple):
    key: str
    pattern: re.Pattern
    format: Callable[[re.Match], str]


DEVICE_TYPE_KEYWORDS: KeywordTable = (
    ("Laptop", ("laptop", "notebook", "macbook", "thinkpad", "dell xps", "hp pavilion", "lenovo", "asus", "acer")),
    ("Desktop Computer", ("desktop", "pc", "computer", "tower", "workstation")),
    ("Tablet", ("tablet", "ipad", "galaxy tab", "surface")),
    ("Smartphone", ("phone", "smartphone", "iphone", "android", "galaxy", "pixel")),
    ("Monitor", ("monitor", "display", "screen", "lcd", "led display")),
    ("Keyboard", ("keyboard", "mechanical keyboard", "wireless keyboard")),
    ("Mouse", ("mouse", "wireless mouse", "trackpad")),
    ("Printer", ("printer", "all-in-one", "laser printer", "inkjet")),
    ("Projector", ("projector", "beamer")),
    ("Webcam", ("webcam", "camera", "video camera")),
)

CONDITION_KEYWORDS: KeywordTable = (
    ("new", ("new", "brand new", "unopened", "sealed", "in box")),
    ("used-good", ("good condition", "lightly used", "barely used", "excellent", "great condition")),
    ("used-fair", ("fair condition", "used", "worn", "functional", "working", "some wear")),
)

SPEC_RULES: Sequence[SpecRule] = (
    SpecRule(
        "RAM",
        re.compile(r"(?<!\d)(\d+)\s*(GB|G|GIG|GIGABYTE)s?\s*(RAM|MEMORY)", re.I),
        lambda m: f"{m.group(1)} GB RAM",
    ),
    SpecRule(
        "Storage",
        re.compile(r"(?<!\d)(\d+)\s*(GB|G|TB|T)\s*(SSD|HDD|STORAGE|DRIVE)", re.I),
        lambda m: f"{m.group(1)} {m.group(2)} {m.group(3)}",
    ),
    SpecRule(
        "Processor",
        re.compile(r"(i\d|ryzen|core i\d|intel|amd|snapdragon|a\d+)\s*(\d+)?", re.I),
        lambda m: m.group(0).strip(),
    ),
    SpecRule(
        "Screen Size",
        re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s*-?\s*(inches|inch|in\b|\")", re.I),
        lambda m: f"{m.group(1)} inch",
    ),
    SpecRule(
        "Year",
        re.compile(r"(20\d\d|19\d\d)\s*(model|version)?", re.I),
        lambda m: m.group(1),
    ),
    SpecRule(
        "Operating System",
        re.compile(r"(windows|mac os|macos|ios|android|chrome os|linux)\s*([\d.]+)?", re.I),
        lambda m: m.group(0).strip(),
    ),
)


def best_label(text: str, table: KeywordTable) -> Optional[str]:
    """Return the label with the most keyword hits in ``text`` (already lowercased)."""
    best, best_hits = None, 0
    for label, keywords in table:
        hits = sum(1 for keyword in keywords if keyword.lower() in text)
        if hits > best_hits:
            best, best_hits = label, hits
    return best


def extract_specifications(text: str, rules: Sequence[SpecRule] = SPEC_RULES) -> dict[str, str]:
    specs: dict[str, str] = {}
    for rule in rules:
        if rule.key in specs:
            continue
        match = rule.pattern.search(text)
        if match:
            specs[rule.key] = rule.format(match)
    return specs


def extract_attributes(
    description,
    device_types: KeywordTable = DEVICE_TYPE_KEYWORDS,
    conditions: KeywordTable = CONDITION_KEYWORDS,
    spec_rules: Sequence[SpecRule] = SPEC_RULES,
) -> AttributeSuggestion:
    """
    Suggest a device type, condition and specifications for a description.

    Confidence: +30 for a device type, +20 for a condition, +10 per matched
    specification rule (at most +50), clamped to 0..100.  Never raises; text
    with no recognizable content yields an empty, zero-confidence result.
    """
    if not isinstance(description, str) or not description.strip():
        return AttributeSuggestion()

    lowered = description.lower()
    confidence = 0

    device_type = best_label(lowered, device_types)
    if device_type:
        confidence += 30

    condition = best_label(lowered, conditions)
    if condition:
        confidence += 20

    specs = extract_specifications(description, spec_rules)
    confidence += min(50, 10 * len(specs))

    return AttributeSuggestion(
        device_type=device_type,
        condition=condition,
        specifications=specs,
        confidence=max(0, min(100, confidence)),
    )
