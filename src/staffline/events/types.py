"""Event type constants.

Learn: Centralizing event names as constants prevents typos between the
server that emits them and the client core that dispatches on them.
These are the wire names — they travel as the "type" field of every frame
on the /ws channel.
"""

# ─── Notifications + chat ────────────────────────────────

NEW_NOTIFICATION = "new_notification"
NEW_MESSAGE = "new_message"
MESSAGE_DELETED = "message_deleted"
REACTION_REMOVED = "reaction_removed"

# ─── Presence ────────────────────────────────────────────

AUX_STATUS_UPDATE = "aux_status_update"
EMPLOYEE_STATUS_UPDATE = "employee_status_update"

# ─── Calendar ────────────────────────────────────────────

NEW_MEETING = "new_meeting"

# ─── Call signaling (relayed peer to peer) ───────────────

CALL_OFFER = "call_offer"
CALL_ANSWER = "call_answer"
ICE_CANDIDATE = "ice_candidate"
CALL_END = "call_end"
CALL_DECLINE = "call_decline"

CALL_SIGNALS = frozenset(
    {CALL_OFFER, CALL_ANSWER, ICE_CANDIDATE, CALL_END, CALL_DECLINE}
)

# ─── Channel control frames (never reach subscribers) ────

SUBSCRIBE = "subscribe"
SUBSCRIBED = "subscribed"
PING = "ping"
PONG = "pong"
AUX_UPDATE = "aux_update"

CONTROL_FRAMES = frozenset({SUBSCRIBE, SUBSCRIBED, PING, PONG, AUX_UPDATE})
