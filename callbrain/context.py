from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callbrain.server.server import ServerManager
    from callbrain.services.manager import ServicesManager

# -------------------------------------------------------------- #
# Context Class
# -------------------------------------------------------------- #


class Context:
    """
    Shared handle on the server layer and the services layer.

    Services reach each other and the storage backends through this object
    instead of holding direct references to one another.
    """

    def __init__(self):
        self.server_manager: ServerManager | None = None
        self.services_manager: ServicesManager | None = None
        self._shutting_down = False

    def set_server_manager(self, server_manager: "ServerManager") -> None:
        self.server_manager = server_manager

    def set_services_manager(self, services_manager: "ServicesManager") -> None:
        self.services_manager = services_manager

    def is_shutting_down(self) -> bool:
        """True once shutdown has started; new work must not be accepted."""
        return self._shutting_down

    def mark_shutdown_started(self) -> None:
        self._shutting_down = True
