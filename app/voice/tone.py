"""
Rule-based tone detection for user-authored text.
Used to pick voice settings so a callback doesn't sound mismatched.
"""

import re

from app.voice.models import Tone, ToneDetection


# Keyword lists (English, Georgian, Russian), matched as lower-cased substrings.
ANGER_KEYWORDS = [
    "angry", "furious", "i hate", "hate this", "terrible", "awful", "worst", "unacceptable",
    "ridiculous", "wtf", "გაბრაზ", "ბრაზი", "საშინელ", "ვერ ვიტან",
    "злой", "злюсь", "бесит", "ужасн", "ненавиж", "отвратител",
]
STRESS_KEYWORDS = [
    "stress", "urgent", "asap", "deadline", "worried", "anxious", "overwhelm",
    "panic", "nervous", "help me", "ვნერვიულობ", "სასწრაფო", "სტრეს",
    "დამეხმარე", "ვღელავ", "стресс", "срочно", "дедлайн", "волнуюсь",
    "переживаю", "паник", "помогите",
]
SAD_KEYWORDS = [
    "sad", "depressed", "unhappy", "lonely", "disappointed", "upset",
    "heartbroken", "მოწყენილ", "სევდ", "ნაღვლიან", "გული მწყდება",
    "грустн", "печаль", "одиноко", "расстро", "тоскл",
]
HAPPY_KEYWORDS = [
    "happy", "great", "awesome", "thanks", "thank you", "love", "excited",
    "amazing", "wonderful", "glad", "მადლობა", "მიხარია", "ბედნიერ",
    "მაგარია", "спасибо", "отлично", "супер", "счастлив", "рада",
]

_EMOJI = re.compile(
    "["
    "\U0001F300-\U0001FAFF"  # symbols, pictographs, emoticons
    "\U0001F1E6-\U0001F1FF"  # flags
    "\u2600-\u27BF"  # misc symbols, dingbats
    "]"
)
_WORD = re.compile(r"[^\W\d_]{3,}")


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _caps_word_count(text: str) -> int:
    return sum(1 for word in _WORD.findall(text) if word.isupper())


def has_emoji(text: str) -> bool:
    return bool(_EMOJI.search(text))


def detect_tone(text: str) -> ToneDetection:
    """
    Classify text into a discrete tone.

    Rules are checked in precedence order (angry, stressed, sad, happy,
    neutral); the first that fires wins.
    """
    if not text or not text.strip():
        return ToneDetection(tone=Tone.NEUTRAL, confidence=0.3, emoji_hint=False)

    lowered = text.lower()
    exclamations = text.count("!")
    emoji = has_emoji(text)

    if (
        _contains_any(lowered, ANGER_KEYWORDS)
        or exclamations >= 3
        or _caps_word_count(text) >= 2
    ):
        confidence = 0.88 + (0.07 if exclamations >= 5 else 0.0)
        return ToneDetection(tone=Tone.ANGRY, confidence=round(min(confidence, 1.0), 2), emoji_hint=emoji)

    if _contains_any(lowered, STRESS_KEYWORDS) or "??" in text:
        return ToneDetection(tone=Tone.STRESSED, confidence=0.82, emoji_hint=emoji)

    if _contains_any(lowered, SAD_KEYWORDS):
        return ToneDetection(tone=Tone.SAD, confidence=0.84, emoji_hint=emoji)

    if _contains_any(lowered, HAPPY_KEYWORDS) or emoji or exclamations >= 1:
        confidence = 0.78 + (0.08 if exclamations >= 2 else 0.0)
        return ToneDetection(tone=Tone.HAPPY, confidence=round(min(confidence, 1.0), 2), emoji_hint=emoji)

    return ToneDetection(tone=Tone.NEUTRAL, confidence=0.6, emoji_hint=emoji)
