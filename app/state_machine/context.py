"""
Conversation Context - typed view over the JSON context column
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict

from app.state_machine.states import MenuAction


class ConversationContext(BaseModel):
    """
    Known context keys.

    Unknown keys found in storage are ignored on load and left untouched on
    save, since the store merges the dumped dict into the stored one.
    """

    model_config = ConfigDict(extra="ignore")

    selected_motorcycle_id: Optional[int] = None
    pending_mileage: Optional[int] = None
    last_menu_selection: Optional[MenuAction] = None
    error_count: int = 0
    # עמוד נוכחי בתפריט בחירת אופנוע ("*" מתקדם לעמוד הבא)
    motorcycle_page: int = 0

    @classmethod
    def from_storage(cls, data: Optional[dict[str, Any]]) -> "ConversationContext":
        return cls.model_validate(data or {})

    def to_storage(self) -> dict[str, Any]:
        """
        Dict for ConversationStore.update_state.

        Cleared fields are emitted as None so the store's merge removes them.
        """
        return self.model_dump(mode="json")
