from .arguments import ArgumentEncoder, ArgumentFile, EncodedArguments
from .config import SessionConfig, load_config
from .session import Cleanup, Session, SessionBuilder, SessionStateError
from .streams import SessionInput, SessionOutput

__all__ = [
    "ArgumentEncoder",
    "ArgumentFile",
    "Cleanup",
    "EncodedArguments",
    "Session",
    "SessionBuilder",
    "SessionConfig",
    "SessionInput",
    "SessionOutput",
    "SessionStateError",
    "load_config",
]
