"""WebSocket protocol constants: wire message types and connection parameters.

Pure data module -- no imports, no logic. Safe to import from any workspace
module without risk of circular dependencies.
"""

# ── Client -> Server message types ────────────────────────────────────

MSG_TERMINAL_IN = "TERMINAL_IN"
MSG_HOMEWORK_TERMINAL_IN = "HOMEWORK_TERMINAL_IN"
MSG_HOMEWORK_JOIN = "HOMEWORK_JOIN"
MSG_HOMEWORK_LEAVE = "HOMEWORK_LEAVE"

# ── Bidirectional (learner broadcasts, teacher pushes) ────────────────

MSG_HOMEWORK_CODE_UPDATE = "HOMEWORK_CODE_UPDATE"

# ── Server -> Client message types ────────────────────────────────────

MSG_TERMINAL_OUT = "TERMINAL_OUT"
MSG_FREEZE_STATE_UPDATE = "FREEZE_STATE_UPDATE"
MSG_CONTROL_STATE_UPDATE = "CONTROL_STATE_UPDATE"

# ── Connection URI query parameters ───────────────────────────────────

PARAM_SESSION_ID = "sessionId"
PARAM_TOKEN = "token"
PARAM_TEACHER_SESSION_ID = "teacherSessionId"
PARAM_LESSON_ID = "lessonId"

# ── Session modes ─────────────────────────────────────────────────────

MODE_STANDALONE = "standalone"
MODE_LIVE = "live"
