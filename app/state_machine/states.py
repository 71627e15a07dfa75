"""
Conversation States and Menu Actions
"""
from enum import Enum


class ConversationState(str, Enum):
    """מצבי שיחת הבוט: רשימה סגורה"""

    IDLE = "IDLE"
    AWAITING_MENU_SELECTION = "AWAITING_MENU_SELECTION"
    AWAITING_MOTORCYCLE_SELECTION = "AWAITING_MOTORCYCLE_SELECTION"
    AWAITING_MILEAGE_INPUT = "AWAITING_MILEAGE_INPUT"
    # שמור לזרימות הזנת נתונים של מנהלים: כרגע מחזיר "טרם מומש"
    AWAITING_MOTORCYCLE_DATA = "AWAITING_MOTORCYCLE_DATA"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"


class MenuAction(str, Enum):
    """Action tag carried by every menu option"""

    # Main menu
    REPORT_MILEAGE = "report_mileage"
    VIEW_MAINTENANCE = "view_maintenance"
    ADMIN_ACTIONS = "admin_actions"
    END_CONVERSATION = "end_conversation"

    # Motorcycle selection menu
    SELECT_MOTORCYCLE = "select_motorcycle"
    SHOW_MORE_MOTORCYCLES = "show_more_motorcycles"
    BACK = "back"
    BACK_TO_MAIN = "back_to_main"

    # Per-motorcycle submenus
    VIEW_SCHEDULED_MAINTENANCE = "view_scheduled_maintenance"
    REPORT_MAINTENANCE_DONE = "report_maintenance_done"
    VIEW_MAINTENANCE_HISTORY = "view_maintenance_history"
    REPORT_CURRENT_MILEAGE = "report_current_mileage"
    VIEW_RECENT_REPORTS = "view_recent_reports"
    BACK_TO_MOTORCYCLE_SELECTION = "back_to_motorcycle_selection"

    # Admin menu
    ADD_MOTORCYCLE = "add_motorcycle"
    MANAGE_MOTORCYCLES = "manage_motorcycles"
    ADD_COURIER = "add_courier"
    MANAGE_COURIERS = "manage_couriers"
    VIEW_REPORTS = "view_reports"


# מעברים מותרים בין מצבים. הישארות באותו מצב (קלט שגוי, הצגת תפריט מנהל)
# מותרת תמיד, וכך גם איפוס ל-IDLE אחרי חריגה מסף השגיאות.
CONVERSATION_TRANSITIONS: dict[ConversationState, list[ConversationState]] = {
    ConversationState.IDLE: [ConversationState.AWAITING_MENU_SELECTION],
    ConversationState.AWAITING_MENU_SELECTION: [
        ConversationState.AWAITING_MOTORCYCLE_SELECTION,
        ConversationState.IDLE,
    ],
    ConversationState.AWAITING_MOTORCYCLE_SELECTION: [
        ConversationState.AWAITING_MILEAGE_INPUT,
        ConversationState.AWAITING_MENU_SELECTION,
    ],
    ConversationState.AWAITING_MILEAGE_INPUT: [ConversationState.AWAITING_CONFIRMATION],
    ConversationState.AWAITING_MOTORCYCLE_DATA: [ConversationState.AWAITING_MENU_SELECTION],
    ConversationState.AWAITING_CONFIRMATION: [
        ConversationState.IDLE,
        ConversationState.AWAITING_MENU_SELECTION,
        # קריאה נמוכה מהמד השמור נדחית בשמירה: חזרה להזנה
        ConversationState.AWAITING_MILEAGE_INPUT,
    ],
}


def is_valid_transition(current: ConversationState, target: ConversationState) -> bool:
    """Check if transition from current to target state is valid"""
    if current == target or target == ConversationState.IDLE:
        return True
    return target in CONVERSATION_TRANSITIONS.get(current, [])
