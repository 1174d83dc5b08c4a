from typing import TYPE_CHECKING

from callbrain.constructor import ServerManagerType

if TYPE_CHECKING:
    from callbrain.context import Context
    from callbrain.server.server import ServerManager

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(client_type: ServerManagerType, context: "Context") -> "ServerManager":
    """Construct the ServerManager for the requested backend set."""

    if client_type == ServerManagerType.PRODUCTION:
        from callbrain.server.production.constructor import construct_server_manager

        return construct_server_manager(context)
    elif client_type == ServerManagerType.TESTING:
        from callbrain.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)

    raise ValueError(f"Unsupported ServerManagerType: {client_type}")
