"""Reference codes linking a Pix payment to a verification session.

Format: ``<word>-<4 hex>``, e.g. ``sol-a4f8``. Short enough to dictate or
type into a banking app's free-text field, URL-safe, lowercase.
"""

import re
import secrets

WORDS = ("sol", "lua", "rio", "mar", "flor", "ceu", "luz", "paz", "cor", "som")

REFERENCE_CODE_PATTERN = re.compile(r"\b([a-z]+-[0-9a-f]{4})\b", re.IGNORECASE)


def generate_reference_code() -> str:
    """Generate a random reference code from a CSPRNG."""
    return f"{secrets.choice(WORDS)}-{secrets.token_hex(2)}"


def extract_reference_codes(free_text: str) -> list[str]:
    """List every reference code candidate in a payer's free-text message.

    Payers sometimes add words around the code ("ref sol-a4f8 obrigado"),
    and ordinary hyphenated words can look like a code ("bem-cafe"). Tokens
    whose word part is one of WORDS come first, then the other code-shaped
    tokens, each group in message order. Without any code-shaped token the
    whole stripped text is the only candidate.

    Args:
        free_text: Payer message from the Pix notification

    Returns:
        Lowercase, de-duplicated candidates; empty if the text is blank
    """
    if not free_text or not free_text.strip():
        return []

    matches = [m.group(1).lower() for m in REFERENCE_CODE_PATTERN.finditer(free_text)]
    if not matches:
        return [free_text.strip().lower()]

    known = [code for code in matches if code.partition("-")[0] in WORDS]
    other = [code for code in matches if code.partition("-")[0] not in WORDS]
    return list(dict.fromkeys(known + other))


def extract_reference_code(free_text: str) -> str | None:
    """Return the most likely reference code in a payer message, or None if blank."""
    candidates = extract_reference_codes(free_text)
    return candidates[0] if candidates else None
