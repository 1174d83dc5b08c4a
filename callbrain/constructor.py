import enum

# -------------------------------------------------------------- #
# Backend Selection
# -------------------------------------------------------------- #


class ServerManagerType(enum.Enum):
    """Which set of storage and inference backends to construct."""

    PRODUCTION = "production"
    TESTING = "testing"


class ServicesManagerType(enum.Enum):
    """Which set of service implementations to construct."""

    PRODUCTION = "production"
    TESTING = "testing"
