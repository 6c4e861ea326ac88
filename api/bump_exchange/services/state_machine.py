IDLE = "idle"
WAITING_FOR_BUMP = "waiting_for_bump"
PROCESSING = "processing"
QR_SCAN_PENDING = "qr_scan_pending"
MATCHED = "matched"
TIMEOUT = "timeout"
ERROR = "error"

ACTIVE_STATES = {WAITING_FOR_BUMP, PROCESSING, QR_SCAN_PENDING}


def transition_state(current: str, event: str) -> str:
    """Next client exchange state. ``matched`` only leaves through an explicit reset."""
    if event == "reset":
        return IDLE

    if current == MATCHED:
        return MATCHED

    if event == "start":
        if current in {IDLE, TIMEOUT, ERROR}:
            return WAITING_FOR_BUMP
        return current

    if event == "hit":
        if current == WAITING_FOR_BUMP:
            return PROCESSING
        return current

    if event == "pending_auth":
        if current in {WAITING_FOR_BUMP, PROCESSING}:
            return QR_SCAN_PENDING
        return current

    if event == "matched":
        if current in ACTIVE_STATES:
            return MATCHED
        return current

    if event == "deadline":
        if current in ACTIVE_STATES:
            return TIMEOUT
        return current

    if event == "fail":
        if current in ACTIVE_STATES:
            return ERROR
        return current

    if event == "cancel":
        if current in ACTIVE_STATES:
            return IDLE
        return current

    return current
