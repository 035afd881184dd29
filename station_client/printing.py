import base64

RAWBT_SCHEME = "rawbt:base64,"


def build_rawbt_link(ticket_text: str) -> str:
    """Deep link that hands a ticket to the RawBT print app on Android"""
    trimmed = (ticket_text or "").strip()
    if not trimmed:
        raise ValueError("Ticket text is empty")
    payload = base64.b64encode(f"{trimmed}\n".encode("utf-8")).decode("ascii")
    return f"{RAWBT_SCHEME}{payload}"
