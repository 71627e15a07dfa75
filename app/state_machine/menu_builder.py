"""
Menu Builder - role and fleet aware menus

Menus are rebuilt from the database on every call, so role changes and fleet
reassignments show up on the very next message.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthorizationException
from app.core.logging import get_logger
from app.db.models.motorcycle import Motorcycle
from app.db.models.user import User, UserRole
from app.domain.services.fleet_service import FleetService
from app.domain.services.user_service import UserService
from app.state_machine.menu import Menu, MenuOption
from app.state_machine.response_generator import RLM, format_number, motorcycle_type_label
from app.state_machine.states import MenuAction

logger = get_logger(__name__)

BACK_KEY = "0"
SHOW_MORE_KEY = "*"


class MenuBuilder:
    """Builds the bot menus for a given user"""

    def __init__(
        self,
        db: AsyncSession,
        fleet: Optional[FleetService] = None,
        page_size: int = 9,
    ):
        if not 1 <= page_size <= 9:
            raise ValueError("page_size must be between 1 and 9")
        self.users = UserService(db)
        self.fleet = fleet or FleetService(db)
        self.page_size = page_size

    async def build_main_menu(self, user_id: int) -> Menu:
        user = await self.users.get_by_id(user_id)

        options = [
            MenuOption(
                key="1",
                label="דווח קילומטראז'",
                description="דיווח קילומטראז' לאופנוע",
                action=MenuAction.REPORT_MILEAGE,
            ),
            MenuOption(
                key="2",
                label="צפה בתחזוקה",
                description="צפה בלוח התחזוקה",
                action=MenuAction.VIEW_MAINTENANCE,
            ),
        ]

        if user.role == UserRole.ADMIN:
            options.extend([
                MenuOption(
                    key="3",
                    label="ניהול אופנועים",
                    description="הוספה ועריכת אופנועים",
                    action=MenuAction.ADMIN_ACTIONS,
                ),
                MenuOption(
                    key="4",
                    label="ניהול שליחים",
                    description="ניהול משתמשי שליחים",
                    action=MenuAction.ADMIN_ACTIONS,
                ),
                MenuOption(
                    key="5",
                    label="דוחות וסטטיסטיקות",
                    description="צפה בדוחות מערכת",
                    action=MenuAction.ADMIN_ACTIONS,
                ),
            ])

        options.append(MenuOption(
            key="0",
            label="סיים שיחה",
            description="סיים את השיחה עם הבוט",
            action=MenuAction.END_CONVERSATION,
        ))

        return Menu(
            id="main-menu",
            title="תפריט ראשי - ניהול צי אופנועים",
            options=options,
            footer="אנא בחר אפשרות מהתפריט (הכנס את המספר)",
            allow_back=False,
            timeout_minutes=5,
        )

    async def _visible_motorcycles(self, user: User, client_id: Optional[int]) -> list[Motorcycle]:
        motorcycles = await self._scoped_motorcycles(user, client_id)
        # אופנוע לא פעיל לא מקבל מקש, כך שהמספור נשאר רציף
        return [motorcycle for motorcycle in motorcycles if motorcycle.is_active]

    async def _scoped_motorcycles(self, user: User, client_id: Optional[int]) -> list[Motorcycle]:
        """שליח רואה רק את האופנועים שלו; מנהל רואה הכל או לפי לקוח"""
        if user.role == UserRole.ADMIN:
            if client_id is not None:
                return await self.fleet.find_by_client_id(client_id)
            return await self.fleet.find_all()

        if user.courier_id is not None:
            return await self.fleet.find_by_courier_id(user.courier_id)

        logger.warning(
            "Courier user without linked courier record",
            extra_data={"user_id": user.id}
        )
        return []

    async def build_motorcycle_selection_menu(
        self,
        user_id: int,
        client_id: Optional[int] = None,
        page: int = 0,
    ) -> Menu:
        """
        Motorcycle picker scoped to what the user may see.

        Shows up to page_size active motorcycles keyed 1..N, a "*" option when more
        remain after this page and a "0" back option. A page past the end wraps
        to the first page.
        """
        user = await self.users.get_by_id(user_id)
        motorcycles = await self._visible_motorcycles(user, client_id)

        if not motorcycles:
            return Menu(
                id="no-motorcycles-menu",
                title="אין אופנועים זמינים",
                options=[MenuOption(
                    key=BACK_KEY,
                    label="חזור לתפריט ראשי",
                    description="חזור לתפריט הראשי",
                    action=MenuAction.BACK_TO_MAIN,
                )],
                footer="אין אופנועים זמינים כרגע",
                allow_back=True,
            )

        start = max(page, 0) * self.page_size
        if start >= len(motorcycles):
            start = 0
        visible = motorcycles[start:start + self.page_size]

        options = [
            MenuOption(
                key=str(index),
                label=f"{motorcycle.license_plate} ({motorcycle_type_label(motorcycle.type)})",
                description=f"קילומטראז': {format_number(motorcycle.current_mileage)}",
                action=MenuAction.SELECT_MOTORCYCLE,
                value=motorcycle.id,
            )
            for index, motorcycle in enumerate(visible, start=1)
        ]

        if start + self.page_size < len(motorcycles):
            options.append(MenuOption(
                key=SHOW_MORE_KEY,
                label="הצג עוד אופנועים",
                description=f"הצג {len(motorcycles) - start - self.page_size} אופנועים נוספים",
                action=MenuAction.SHOW_MORE_MOTORCYCLES,
            ))

        options.append(MenuOption(
            key=BACK_KEY,
            label="חזור",
            description="חזור לתפריט הקודם",
            action=MenuAction.BACK,
        ))

        return Menu(
            id="motorcycle-selection-menu",
            title="בחר אופנוע",
            options=options,
            footer=f"נמצאו {len(motorcycles)} אופנועים. בחר אופנוע מהרשימה (הכנס את המספר)",
            allow_back=True,
            timeout_minutes=5,
        )

    async def build_maintenance_menu(self, motorcycle_id: int) -> Menu:
        """Raises MotorcycleNotFoundError for an unknown motorcycle"""
        motorcycle = await self.fleet.get_motorcycle(motorcycle_id)

        return Menu(
            id="maintenance-menu",
            title=f"תחזוקה - {motorcycle.license_plate}",
            options=[
                MenuOption(
                    key="1",
                    label="צפה בתחזוקה מתוכננת",
                    description="הצג את לוח התחזוקה",
                    action=MenuAction.VIEW_SCHEDULED_MAINTENANCE,
                    value=motorcycle.id,
                ),
                MenuOption(
                    key="2",
                    label="דווח תחזוקה שבוצעה",
                    description="דיווח על תחזוקה שהושלמה",
                    action=MenuAction.REPORT_MAINTENANCE_DONE,
                    value=motorcycle.id,
                ),
                MenuOption(
                    key="3",
                    label="היסטוריית תחזוקה",
                    description="צפה בהיסטוריית התחזוקה",
                    action=MenuAction.VIEW_MAINTENANCE_HISTORY,
                    value=motorcycle.id,
                ),
                MenuOption(
                    key=BACK_KEY,
                    label="חזור לבחירת אופנוע",
                    description="חזור לרשימת האופנועים",
                    action=MenuAction.BACK_TO_MOTORCYCLE_SELECTION,
                ),
            ],
            footer="בחר פעולת תחזוקה (הכנס את המספר)",
            allow_back=True,
            timeout_minutes=5,
        )

    async def build_mileage_reporting_menu(self, motorcycle_id: int) -> Menu:
        """Raises MotorcycleNotFoundError for an unknown motorcycle"""
        motorcycle = await self.fleet.get_motorcycle(motorcycle_id)

        return Menu(
            id="mileage-reporting-menu",
            title=f"דיווח קילומטראז' - {motorcycle.license_plate}",
            options=[
                MenuOption(
                    key="1",
                    label="דווח קילומטראז' נוכחי",
                    description="דיווח על הקילומטראז' הנוכחי",
                    action=MenuAction.REPORT_CURRENT_MILEAGE,
                    value=motorcycle.id,
                ),
                MenuOption(
                    key="2",
                    label="צפה בדיווחים אחרונים",
                    description="צפה בדיווחי הקילומטראז' האחרונים",
                    action=MenuAction.VIEW_RECENT_REPORTS,
                    value=motorcycle.id,
                ),
                MenuOption(
                    key=BACK_KEY,
                    label="חזור לבחירת אופנוע",
                    description="חזור לרשימת האופנועים",
                    action=MenuAction.BACK_TO_MOTORCYCLE_SELECTION,
                ),
            ],
            footer="בחר פעולת דיווח (הכנס את המספר)",
            allow_back=True,
            timeout_minutes=5,
        )

    async def build_admin_menu(self, user_id: int) -> Menu:
        """
        Raises:
            AuthorizationException: the user is not an administrator
        """
        user = await self.users.get_by_id(user_id)
        if user.role != UserRole.ADMIN:
            raise AuthorizationException("User is not authorized to access admin menu", user_id=user_id)

        return Menu(
            id="admin-menu",
            title="תפריט אדמין - ניהול מערכת",
            options=[
                MenuOption(
                    key="1",
                    label="הוסף אופנוע חדש",
                    description="הוסף אופנוע חדש למערכת",
                    action=MenuAction.ADD_MOTORCYCLE,
                ),
                MenuOption(
                    key="2",
                    label="נהל אופנועים",
                    description="ערוך או מחק אופנועים קיימים",
                    action=MenuAction.MANAGE_MOTORCYCLES,
                ),
                MenuOption(
                    key="3",
                    label="הוסף שליח חדש",
                    description="הוסף משתמש שליח חדש",
                    action=MenuAction.ADD_COURIER,
                ),
                MenuOption(
                    key="4",
                    label="נהל שליחים",
                    description="ערוך או מחק משתמשי שליחים",
                    action=MenuAction.MANAGE_COURIERS,
                ),
                MenuOption(
                    key="5",
                    label="צפה בדוחות",
                    description="צפה בדוחות מערכת וסטטיסטיקות",
                    action=MenuAction.VIEW_REPORTS,
                ),
                MenuOption(
                    key=BACK_KEY,
                    label="חזור לתפריט ראשי",
                    description="חזור לתפריט הראשי",
                    action=MenuAction.BACK_TO_MAIN,
                ),
            ],
            footer="בחר פעולת ניהול (הכנס את המספר)",
            allow_back=True,
            timeout_minutes=10,
        )

    @staticmethod
    def render_menu(menu: Menu) -> str:
        """תצוגה מלאה של תפריט: כולל תיאורים וזמן תפוגה"""
        lines = [RLM + menu.title, "=" * 30, ""]

        for option in menu.enabled_options:
            lines.append(f"{option.key}. {option.label}")
            if option.description:
                lines.append(f"   {option.description}")
            lines.append("")

        if menu.footer:
            lines.extend(["", menu.footer])

        if menu.timeout_minutes:
            lines.extend(["", f"זמן תפוגה: {menu.timeout_minutes} דקות"])

        return "\n".join(lines) + "\n"
