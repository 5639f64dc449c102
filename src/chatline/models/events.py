"""
Socket.IO event names exchanged with chat clients.
"""


class C2SEvent:
    """Client-to-server events."""

    PRIVATE_MESSAGE = "private_message"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    CALL_USER = "call_user"
    ANSWER_CALL = "answer_call"
    REJECT_CALL = "reject_call"
    END_CALL = "end_call"
    ICE_CANDIDATE = "ice_candidate"

    ALL = (
        PRIVATE_MESSAGE,
        TYPING_START,
        TYPING_STOP,
        CALL_USER,
        ANSWER_CALL,
        REJECT_CALL,
        END_CALL,
        ICE_CANDIDATE,
    )


class S2CEvent:
    """Server-to-client events."""

    # presence
    ONLINE_USERS = "online_users"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    SESSION_REPLACED = "session_replaced"

    # messages
    NEW_MESSAGE = "new_message"
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"

    # typing
    USER_TYPING = "user_typing"
    USER_STOP_TYPING = "user_stop_typing"

    # calls
    INCOMING_CALL = "incoming_call"
    CALL_ANSWERED = "call_answered"
    CALL_REJECTED = "call_rejected"
    CALL_ENDED = "call_ended"
    CALL_FAILED = "call_failed"
    ICE_CANDIDATE = "ice_candidate"
