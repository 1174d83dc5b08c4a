import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.services.manager import BaseContactDirectory

# -------------------------------------------------------------- #
# In-Memory Contact Directory
# -------------------------------------------------------------- #


class InMemoryContactDirectory(BaseContactDirectory):
    """
    Contact lookup over a mapping of contact id to display name.

    Contacts are owned by an external collaborator; this directory only mirrors
    the names needed to label retrieval context and to recognise a contact
    mentioned in a query.
    """

    def __init__(self, context: "Context", contacts: dict[str, str] | None = None):
        super().__init__(context)
        self._contacts: dict[str, str] = dict(contacts or {})

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"InMemoryContactDirectory initialized ({len(self._contacts)} contacts)"
        )

    def set_contact(self, contact_id: str, display_name: str) -> None:
        self._contacts[contact_id] = display_name

    def remove_contact(self, contact_id: str) -> None:
        self._contacts.pop(contact_id, None)

    async def get_display_name(self, contact_id: str) -> str | None:
        return self._contacts.get(contact_id)

    async def find_contact_in_text(self, text: str) -> str | None:
        """
        Find a contact mentioned in free text.

        Full names win over first names; the longest matching name wins.
        """
        lowered = text.lower()
        best: tuple[int, str] | None = None

        for contact_id, name in self._contacts.items():
            candidates = {name.strip()}
            first_name = name.strip().split(" ")[0]
            if len(first_name) > 2:
                candidates.add(first_name)

            for candidate in candidates:
                if not candidate:
                    continue
                if re.search(rf"\b{re.escape(candidate.lower())}\b", lowered):
                    if best is None or len(candidate) > best[0]:
                        best = (len(candidate), contact_id)

        return best[1] if best else None
