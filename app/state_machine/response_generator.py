"""
Response Generator - Hebrew bot replies

Pure formatting: no I/O and no state. Every public method returns text that
starts with a right-to-left mark so WhatsApp renders it right-aligned.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from app.state_machine.menu import Menu

RLM = "\u200f"
RLE = "\u202b"
PDF = "\u202c"

_ARABIC_INDIC_DIGITS = "٠١٢٣٤٥٦٧٨٩"


class BotErrorCode(str, Enum):
    """קודי שגיאה שמוצגים למשתמש בצ'אט"""

    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    MOTORCYCLE_NOT_FOUND = "MOTORCYCLE_NOT_FOUND"
    COURIER_NOT_ASSIGNED = "COURIER_NOT_ASSIGNED"
    INVALID_MILEAGE = "INVALID_MILEAGE"
    MAINTENANCE_CALCULATION_ERROR = "MAINTENANCE_CALCULATION_ERROR"
    INVALID_MAINTENANCE_TYPE = "INVALID_MAINTENANCE_TYPE"
    CONVERSATION_EXPIRED = "CONVERSATION_EXPIRED"
    CONVERSATION_RESET = "CONVERSATION_RESET"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    WEBHOOK_VERIFICATION_FAILED = "WEBHOOK_VERIFICATION_FAILED"
    MESSAGE_SEND_FAILED = "MESSAGE_SEND_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_MENU_SELECTION = "INVALID_MENU_SELECTION"
    INVALID_MOTORCYCLE_SELECTION = "INVALID_MOTORCYCLE_SELECTION"
    INVALID_CONFIRMATION = "INVALID_CONFIRMATION"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    STATE_TRANSITION_ERROR = "STATE_TRANSITION_ERROR"


DEFAULT_ERROR_MESSAGES: dict[str, str] = {
    BotErrorCode.INVALID_PHONE_NUMBER: "מספר טלפון לא תקין",
    BotErrorCode.USER_NOT_FOUND: "משתמש לא נמצא",
    BotErrorCode.UNAUTHORIZED: "אין הרשאה לבצע פעולה זו",
    BotErrorCode.MOTORCYCLE_NOT_FOUND: "אופנוע לא נמצא",
    BotErrorCode.COURIER_NOT_ASSIGNED: "שליח לא משויך לאופנוע זה",
    BotErrorCode.INVALID_MILEAGE: "ערך קילומטראז' לא תקין",
    BotErrorCode.MAINTENANCE_CALCULATION_ERROR: "שגיאה בחישוב תחזוקה",
    BotErrorCode.INVALID_MAINTENANCE_TYPE: "סוג תחזוקה לא תקין",
    BotErrorCode.CONVERSATION_EXPIRED: "השיחה פגה, אנא התחל שיחה חדשה",
    BotErrorCode.CONVERSATION_RESET: "יותר מדי ניסיונות שגויים, השיחה אופסה",
    BotErrorCode.INVALID_STATE_TRANSITION: "מעבר לא חוקי בין מצבי שיחה",
    BotErrorCode.WEBHOOK_VERIFICATION_FAILED: "אימות webhook נכשל",
    BotErrorCode.MESSAGE_SEND_FAILED: "שליחת הודעה נכשלה",
    BotErrorCode.VALIDATION_ERROR: "שגיאת אימות נתונים",
    BotErrorCode.DATABASE_ERROR: "שגיאת מסד נתונים",
    BotErrorCode.INTERNAL_ERROR: "שגיאה פנימית במערכת",
}

UNKNOWN_ERROR_MESSAGE = "אירעה שגיאה לא צפויה"

# תבניות מיוחדות לקודים מסוימים; כל השאר משתמשים בתבנית ברירת המחדל
_ERROR_TEMPLATES: dict[str, str] = {
    BotErrorCode.INVALID_MILEAGE: "❌ שגיאה בדיווח קילומטראז': {message}\nאנא הכנס מספר חיובי עד 999,999.",
    BotErrorCode.INVALID_MENU_SELECTION: "❌ בחירה לא תקינה: {message}\nאנא בחר מספר מהתפריט.",
    BotErrorCode.CONVERSATION_EXPIRED: "❌ השיחה פגה: {message}\nאנא התחל שיחה חדשה.",
    BotErrorCode.CONVERSATION_RESET: "❌ {message}\nשלח הודעה כלשהי כדי להתחיל מחדש.",
}
_DEFAULT_ERROR_TEMPLATE = "❌ שגיאה: {message}"

MOTORCYCLE_TYPE_LABELS = {
    "MOTORCYCLE_125": "125 סמ״ק",
    "MOTORCYCLE_250": "250 סמ״ק",
    "ELECTRIC": "חשמלי",
}

MAINTENANCE_TYPE_LABELS = {
    "NONE": "ללא תחזוקה",
    "SMALL": "תחזוקה קטנה",
    "LARGE": "תחזוקה גדולה",
}


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def motorcycle_type_label(motorcycle_type: Any) -> str:
    value = _enum_value(motorcycle_type)
    return MOTORCYCLE_TYPE_LABELS.get(value, str(value))


def maintenance_type_label(maintenance_type: Any) -> str:
    value = _enum_value(maintenance_type)
    return MAINTENANCE_TYPE_LABELS.get(value, str(value))


def format_number(value: Optional[int]) -> str:
    """1234567 -> '1,234,567'"""
    return f"{value or 0:,}"


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d.%m.%Y") if value else "לא צוין"


class ResponseGenerator:
    """Builds the Hebrew text of every bot reply"""

    def format_hebrew_text(
        self,
        text: str,
        rtl: bool = True,
        include_direction_markers: bool = False,
        format_numbers: bool = False,
    ) -> str:
        """
        Mark text as right-to-left.

        Args:
            rtl: prefix with RLM; when False the text is returned unchanged
            include_direction_markers: wrap in RLE ... PDF embedding
            format_numbers: replace ASCII digits with Arabic-Indic digits
        """
        if not rtl:
            return text

        formatted = RLM + text
        if format_numbers:
            formatted = formatted.translate(str.maketrans("0123456789", _ARABIC_INDIC_DIGITS))
        if include_direction_markers:
            formatted = RLE + formatted + PDF
        return formatted

    def welcome(self, user_name: str) -> str:
        return self.format_hebrew_text(
            f"שלום {user_name}! ברוך הבא לבוט ניהול צי האופנועים של ספידי."
        )

    def error(self, code: str | BotErrorCode, user_message: Optional[str] = None) -> str:
        """Error reply; user_message overrides the table text for the code"""
        code = _enum_value(code)
        message = user_message or DEFAULT_ERROR_MESSAGES.get(code, UNKNOWN_ERROR_MESSAGE)
        template = _ERROR_TEMPLATES.get(code, _DEFAULT_ERROR_TEMPLATE)
        return self.format_hebrew_text(template.format(message=message))

    def success(self, action: str, data: Optional[dict[str, Any]] = None) -> str:
        data = data or {}

        if action == "mileage_reported":
            text = (
                "✅ דיווח קילומטראז' הושלם!\n"
                f"קילומטראז': {format_number(data.get('mileage'))}\n"
                f"אופנוע: {data.get('license_plate') or data.get('motorcycle_id') or ''}"
            )
        elif action == "maintenance_recorded":
            text = (
                "✅ תחזוקה נרשמה בהצלחה!\n"
                f"סוג: {maintenance_type_label(data['maintenance_type']) if data.get('maintenance_type') else 'לא צוין'}\n"
                f"קילומטראז': {format_number(data.get('mileage'))}"
            )
        elif action == "motorcycle_assigned":
            text = (
                "✅ אופנוע הוקצה בהצלחה!\n"
                f"אופנוע: {data.get('license_plate', '')}\n"
                f"שליח: {data.get('courier_name', '')}"
            )
        elif action == "conversation_ended":
            text = "✅ השיחה הסתיימה.\nתודה על השימוש בבוט של ספידי!\nלשיחה חדשה שלח הודעה."
        elif action == "motorcycle_selected":
            text = f"✅ אופנוע נבחר: {data.get('license_plate') or data.get('motorcycle_id') or ''}"
        else:
            text = "✅ הפעולה הושלמה בהצלחה!"

        return self.format_hebrew_text(text)

    def mileage_prompt(self) -> str:
        return self.format_hebrew_text("אנא הכנס את הקילומטראז' הנוכחי של האופנוע:")

    def mileage_confirmation(self, mileage: int) -> str:
        """השאלה מציגה את הערך הממתין כדי שלא יהיה צורך להקליד אותו שוב"""
        return self.format_hebrew_text(
            f"האם אתה מאשר לדווח קילומטראז' של {format_number(mileage)} ק\"מ?\n\n"
            "1. כן - אשר דיווח\n"
            "2. לא - בטל"
        )

    def confirmation_prompt(self, action: str, data: Optional[dict[str, Any]] = None) -> str:
        data = data or {}

        if action == "report_mileage":
            prompt = (
                f"האם אתה בטוח שברצונך לדווח קילומטראז' של {format_number(data.get('mileage'))} "
                f"לאופנוע {data.get('license_plate', '')}?"
            )
        elif action == "record_maintenance":
            prompt = (
                f"האם אתה בטוח שברצונך לרשום {maintenance_type_label(data.get('maintenance_type', ''))} "
                f"בקילומטראז' {format_number(data.get('mileage'))}?"
            )
        elif action == "end_conversation":
            prompt = "האם אתה בטוח שברצונך לסיים את השיחה?"
        else:
            prompt = f"האם אתה בטוח שברצונך לבצע פעולה זו: {action}?"

        return self.format_hebrew_text(prompt + "\n\n1. כן - אשר\n2. לא - בטל")

    def cancellation(self) -> str:
        return self.format_hebrew_text("הדיווח בוטל.")

    def motorcycle_info(self, motorcycle: Any) -> str:
        lines = [
            "🏍️ פרטי אופנוע:",
            f"מספר רישוי: {motorcycle.license_plate or 'לא צוין'}",
            f"סוג: {motorcycle_type_label(motorcycle.type)}",
            f"קילומטראז' נוכחי: {format_number(motorcycle.current_mileage)}",
            f"תוקף רישוי: {_format_date(motorcycle.license_expiry_date)}",
            f"תוקף ביטוח: {_format_date(motorcycle.insurance_expiry_date)}",
            f"סטטוס: {'פעיל' if motorcycle.is_active else 'לא פעיל'}",
        ]
        if motorcycle.assigned_courier is not None:
            lines.append(f"שליח: {motorcycle.assigned_courier.name}")
        if motorcycle.assigned_client is not None:
            lines.append(f"לקוח: {motorcycle.assigned_client.name}")

        return self.format_hebrew_text("\n".join(lines))

    def maintenance_reminder(
        self,
        next_maintenance: Any = None,
        overdue: Optional[list[Any]] = None,
    ) -> str:
        """
        Reminder for the upcoming service and any overdue ones.

        next_maintenance / overdue items expose type, due_in and next_mileage
        (MaintenanceCalculation). Urgency: 🟢 default, 🟡 under 500 km, 🔴 under 100 km.
        """
        lines: list[str] = []

        if next_maintenance is not None and next_maintenance.due_in is not None:
            due_in = next_maintenance.due_in
            urgency = "🟢"
            if due_in < 500:
                urgency = "🟡"
            if due_in < 100:
                urgency = "🔴"

            lines.extend([
                f"{urgency} תחזוקה מתוכננת:",
                f"סוג: {maintenance_type_label(next_maintenance.type)}",
                f"בעוד: {format_number(due_in)} ק\"מ",
                f"בקילומטראז': {format_number(next_maintenance.next_mileage)}",
            ])

        if overdue:
            lines.append("\n🔴 תחזוקה באיחור:")
            for item in overdue:
                lines.append(
                    f"- {maintenance_type_label(item.type)} ({format_number(abs(item.due_in))} ק\"מ באיחור)"
                )

        if not lines:
            return self.format_hebrew_text("✅ אין תחזוקה מתוכננת")
        return self.format_hebrew_text("\n".join(lines))

    def menu_message(self, menu: Menu) -> str:
        """כותרת, שורה "מקש. תווית" לכל אפשרות פעילה, ו-footer"""
        body = "\n".join(f"{option.key}. {option.label}" for option in menu.enabled_options)
        text = self.format_hebrew_text(menu.title) + "\n\n" + body
        if menu.footer:
            text += "\n\n" + self.format_hebrew_text(menu.footer)
        return text

    def status(self, status: str, data: Optional[dict[str, Any]] = None) -> str:
        data = data or {}
        messages = {
            "processing": "⏳ מעבד את הבקשה...",
            "waiting_for_input": "⏳ ממתין לקלט מהמשתמש...",
            "conversation_timeout": "⏰ השיחה פגה בגלל חוסר פעילות. אנא התחל שיחה חדשה.",
            "system_maintenance": "🔧 המערכת בתחזוקה. אנא נסה שוב מאוחר יותר.",
            "rate_limited": f"⏱️ יותר מדי בקשות. אנא המתן {data.get('wait_time', 60)} שניות.",
        }
        return self.format_hebrew_text(messages.get(status, f"📊 סטטוס: {status}"))

    def help(self) -> str:
        return self.format_hebrew_text("\n".join([
            "📚 עזרה - בוט ניהול צי אופנועים",
            "",
            "פקודות זמינות:",
            "• דווח קילומטראז' - דיווח קילומטראז' לאופנוע",
            "• צפה בתחזוקה - צפה בלוח התחזוקה",
            "• 0 - סיים שיחה",
            "",
            "לשליחים:",
            "• דווח קילומטראז' לאופנועים המשויכים אליך",
            "• צפה בתחזוקה הנדרשת",
            "",
            "למנהלים:",
            "• ניהול אופנועים וחלפים",
            "• ניהול משתמשי שליחים",
            "• צפה בדוחות וסטטיסטיקות",
            "",
            "לעזרה נוספת צור קשר עם המנהל.",
        ]))

    def generic_apology(self) -> str:
        return "אירעה שגיאה בעיבוד ההודעה. אנא נסה שוב."
