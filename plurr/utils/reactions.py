from typing import Iterable, List, Optional

# Implicit reaction: counted, never displayed
LIKE = "like"
MAX_DISPLAY_SYMBOLS = 4


def aggregate_reactions(values: Iterable[Optional[str]]) -> str:
    """
    Build the display string for an image's reactions.

    The result is the total row count followed by up to four distinct
    non-"like" values in first-seen order, e.g. ``["🔥", "🔥", "💀", "like"]``
    gives ``"4🔥💀"``. No reactions gives ``"0"``.
    """
    reactions = [value for value in values if isinstance(value, str)]
    if not reactions:
        return "0"

    symbols: List[str] = []
    for value in reactions:
        if len(symbols) == MAX_DISPLAY_SYMBOLS:
            break
        if value == LIKE or value in symbols:
            continue
        symbols.append(value)

    return f"{len(reactions)}{''.join(symbols)}"
