from enum import Enum


class NodeKind(Enum):
    CODE = "CODE"
    PREVIEW = "PREVIEW"
    TERMINAL = "TERMINAL"
    AGENT = "AGENT"


class PortDirection(Enum):
    INPUT = "in"
    OUTPUT = "out"


class InteractionKind(Enum):
    DRAG = "drag"
    EDIT = "edit"


class LogType(Enum):
    LOG = "log"
    WARN = "warn"
    ERROR = "error"
    INFO = "info"


class MessageRole(Enum):
    USER = "user"
    MODEL = "model"


class SyncStatus(Enum):
    OFFLINE = "offline"
    SAVING = "saving"
    SYNCED = "synced"
    ERROR = "error"
