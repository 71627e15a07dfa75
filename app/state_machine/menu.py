"""
Menu - ephemeral, rebuilt on every request that needs it
"""
from dataclasses import dataclass, field
from typing import Optional

from app.state_machine.states import MenuAction


@dataclass
class MenuOption:
    key: str
    label: str
    action: MenuAction
    description: Optional[str] = None
    enabled: bool = True
    # מזהה ישות שהאפשרות מייצגת (למשל motorcycle_id), לא מקש התפריט
    value: Optional[int] = None


@dataclass
class Menu:
    id: str
    title: str
    options: list[MenuOption] = field(default_factory=list)
    footer: Optional[str] = None
    allow_back: bool = False
    timeout_minutes: Optional[int] = None

    def find_option(self, key: str) -> Optional[MenuOption]:
        """Enabled option whose key equals the input exactly"""
        for option in self.options:
            if option.enabled and option.key == key:
                return option
        return None

    @property
    def enabled_options(self) -> list[MenuOption]:
        return [option for option in self.options if option.enabled]
