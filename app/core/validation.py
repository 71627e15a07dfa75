"""
Input Validation Utilities

- Phone number validation and normalization (Israeli and E.164 formats)
- Sanitizing of inbound chat text
- Courier and client name validation
- Odometer value parsing
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # Israeli phone numbers: 05X-XXXXXXX or +972-5X-XXXXXXX
    PHONE_ISRAEL = re.compile(
        r"^(?:"
        r"(?:\+972|972)[-\s]?(?:[23489]|5[0-9])[-\s]?\d{3}[-\s]?\d{4}|"
        r"0(?:[23489]|5[0-9])[-\s]?\d{3}[-\s]?\d{4}"
        r")$"
    )

    # International phone (E.164 format)
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    # מספר שלם עשרוני בלבד, עם סימן מינוס אופציונלי (נדחה בטווח)
    INTEGER = re.compile(r"^-?[0-9]+$")

    # שמות שליחים ולקוחות: עברית, אנגלית, ספרות וסימני פיסוק של שמות עסקים
    NAME = re.compile(r"^[\u0590-\u05FFa-zA-Z0-9\s\-\'\".&]+$")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def validate(phone: str, allow_international: bool = True) -> bool:
        """
        Validate phone number format.

        Args:
            phone: Phone number to validate
            allow_international: Allow international format

        Returns:
            True if valid, False otherwise
        """
        if not phone:
            return False

        cleaned = re.sub(r"[\s\-]", "", phone)

        if ValidationPatterns.PHONE_ISRAEL.match(cleaned):
            return True

        if allow_international and ValidationPatterns.PHONE_INTERNATIONAL.match(cleaned):
            return True

        return False

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize phone number to +972 international format.

        WhatsApp webhooks deliver "9725XXXXXXXX" and couriers type "05X-XXXXXXX";
        both normalize to "+9725XXXXXXXX".
        """
        cleaned = re.sub(r"[^\d+]", "", phone)

        if cleaned.startswith("0"):
            cleaned = "+972" + cleaned[1:]
        elif cleaned and not cleaned.startswith("+"):
            cleaned = "+" + cleaned

        return cleaned

    @staticmethod
    def mask(phone: str) -> str:
        """Mask phone number for logging (privacy)"""
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class TextSanitizer:
    """Text sanitization for inbound chat messages"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Trim, cap length and drop control characters (newlines and tabs kept).

        Does not HTML escape; replies are plain WhatsApp text.
        """
        if not text:
            return ""

        cleaned = "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )
        return cleaned.strip()[:max_length]


class NameValidator:
    """Name validation utilities"""

    MIN_LENGTH = 2
    MAX_LENGTH = 100

    @staticmethod
    def validate(name: str, max_length: int = MAX_LENGTH) -> tuple[bool, str | None]:
        """
        Validate name format.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Name is required"

        name = name.strip()

        if len(name) < NameValidator.MIN_LENGTH:
            return False, f"Name too short (minimum {NameValidator.MIN_LENGTH} characters)"

        if len(name) > max_length:
            return False, f"Name too long (maximum {max_length} characters)"

        if not ValidationPatterns.NAME.match(name):
            return False, "Name contains invalid characters"

        return True, None


class MileageValidator:
    """ולידציה של קריאת מד-אוץ שהוקלדה בצ'אט"""

    MIN_VALUE = 0
    MAX_VALUE = 999_999

    @classmethod
    def parse(cls, text: str) -> int | None:
        """
        Parse an odometer reading.

        Only plain base-10 integers are accepted. Decimals, thousands separators
        and trailing units are rejected.

        Returns:
            The value when it is within [MIN_VALUE, MAX_VALUE], otherwise None
        """
        if text is None:
            return None
        candidate = text.strip()
        if not ValidationPatterns.INTEGER.match(candidate):
            return None
        value = int(candidate)
        if value < cls.MIN_VALUE or value > cls.MAX_VALUE:
            return None
        return value
