import time
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo
import hmac
import uuid
from typing import Optional

EVENT_TZ = ZoneInfo("America/Sao_Paulo")

# kept lower-case inside names ("MARIA DA SILVA" -> "Maria da Silva")
NAME_PREPOSITIONS = frozenset({
    "da", "de", "do", "das", "dos", "e", "em", "na", "no", "nas", "nos",
    "a", "o", "as", "os", "para", "por", "com", "sem",
})


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def event_today(ts: float | None = None) -> str:
    # presence keys are calendar dates at the venue
    when = datetime.fromtimestamp(ts if ts is not None else now_ts(),
                                  tz=EVENT_TZ)
    return when.date().isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def collapse_ws(text: str) -> str:
    return " ".join(text.split())


def digits_only(value) -> str:
    if value is None:
        return ""
    return re.sub(r"\D", "", str(value))


def is_all_caps(name: str) -> bool:
    return name == name.upper() and name != name.lower()


def to_title_case(text: str) -> str:
    """
    "FERNANDO DOS SANTOS" -> "Fernando dos Santos"
    """
    if not text:
        return text
    words = text.lower().split(" ")
    out = []
    for i, word in enumerate(words):
        if i > 0 and word in NAME_PREPOSITIONS:
            out.append(word)
        else:
            out.append(word[:1].upper() + word[1:])
    return " ".join(out)
