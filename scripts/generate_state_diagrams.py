"""
ייצור דיאגרמת Mermaid ממכונת המצבים של שיחת הבוט.

שימוש:
    python scripts/generate_state_diagrams.py                  # הדפסה למסך
    python scripts/generate_state_diagrams.py --update README.md
    python scripts/generate_state_diagrams.py --check README.md   # ל-CI
"""
import argparse
import re
import sys
from pathlib import Path
from typing import Any

# הוספת root לנתיב כדי לאפשר ייבוא
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.state_machine.states import (  # noqa: E402
    CONVERSATION_TRANSITIONS,
    ConversationState,
)

START_MARKER = "<!-- STATE_DIAGRAMS_START -->"
END_MARKER = "<!-- STATE_DIAGRAMS_END -->"

# תוויות עבריות לכל state
CONVERSATION_LABELS: dict[str, str] = {
    ConversationState.IDLE.value: "ממתין להודעה",
    ConversationState.AWAITING_MENU_SELECTION.value: "תפריט ראשי",
    ConversationState.AWAITING_MOTORCYCLE_SELECTION.value: "בחירת אופנוע",
    ConversationState.AWAITING_MILEAGE_INPUT.value: "הזנת קילומטראז'",
    ConversationState.AWAITING_MOTORCYCLE_DATA.value: "הזנת נתוני אופנוע",
    ConversationState.AWAITING_CONFIRMATION.value: "אישור דיווח",
}


def _sanitize_id(state_value: str) -> str:
    """המרת ערך state למזהה תקין ב-Mermaid (ללא נקודות ורווחים)."""
    return state_value.replace(".", "_").replace(" ", "_")


def generate_mermaid_from_transitions(
    transitions: dict[Any, list[Any]],
    labels: dict[str, str],
    initial: Any = None,
) -> str:
    """
    ייצור דיאגרמת stateDiagram-v2 מ-transition dictionary.

    Args:
        transitions: מילון מעברים {state: [target_states]}
        labels: מילון תוויות {state_value: "תווית בעברית"}
        initial: ה-state ההתחלתי (חץ [*])
    """
    lines: list[str] = ["stateDiagram-v2"]

    all_states: set[str] = set()
    for source, targets in transitions.items():
        all_states.add(source.value)
        for target in targets:
            all_states.add(target.value)

    for state_value in sorted(all_states):
        label = labels.get(state_value, state_value)
        lines.append(f"    {_sanitize_id(state_value)} : {label}")

    lines.append("")

    if initial is not None:
        lines.append(f"    [*] --> {_sanitize_id(initial.value)}")
        lines.append("")

    for source, targets in transitions.items():
        source_id = _sanitize_id(source.value)
        for target in targets:
            lines.append(f"    {source_id} --> {_sanitize_id(target.value)}")

    return "\n".join(lines)


def generate_all_diagrams() -> dict[str, str]:
    """ייצור כל הדיאגרמות ומחזיר מילון {שם: mermaid_string}."""
    return {
        "שיחת בוט (ConversationState)": generate_mermaid_from_transitions(
            CONVERSATION_TRANSITIONS,
            CONVERSATION_LABELS,
            initial=ConversationState.IDLE,
        ),
    }


def format_diagrams_as_markdown(diagrams: dict[str, str]) -> str:
    """עיצוב הדיאגרמות כ-markdown עם בלוקי mermaid."""
    sections: list[str] = []
    for name, mermaid_code in diagrams.items():
        sections.append(f"#### {name}\n")
        sections.append(f"```mermaid\n{mermaid_code}\n```\n")
    return "\n".join(sections)


def _section(markdown_content: str) -> str:
    return f"{START_MARKER}\n\n### דיאגרמות מכונת מצבים\n\n{markdown_content}\n{END_MARKER}"


_SECTION_PATTERN = re.compile(
    re.escape(START_MARKER) + r".*?" + re.escape(END_MARKER),
    re.DOTALL,
)


def update_markdown_file(path: Path, markdown_content: str) -> None:
    """החלפת סעיף הדיאגרמות בקובץ, או הוספה לסופו אם אין סמנים."""
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    new_section = _section(markdown_content)

    if START_MARKER in content:
        content = _SECTION_PATTERN.sub(lambda _: new_section, content)
    else:
        content = content.rstrip("\n") + ("\n\n" if content else "") + new_section + "\n"

    path.write_text(content, encoding="utf-8")
    print(f"עודכן: {path}")


def check_markdown_file(path: Path, markdown_content: str) -> bool:
    """
    בדיקה שהדיאגרמות בקובץ מסונכרנות עם הקוד.

    מחזיר True אם הכל מסונכרן, False אם יש הבדלים או שאין סמנים.
    """
    if not path.exists():
        print(f"שגיאה: הקובץ {path} לא קיים")
        return False

    match = _SECTION_PATTERN.search(path.read_text(encoding="utf-8"))
    if not match:
        print(f"שגיאה: לא נמצא בלוק דיאגרמות ב-{path}")
        return False

    if match.group(0) == _section(markdown_content):
        print("הדיאגרמות מסונכרנות עם הקוד ✓")
        return True

    print(f"שגיאה: הדיאגרמות ב-{path} אינן מסונכרנות עם הקוד!")
    print(f"הרץ: python scripts/generate_state_diagrams.py --update {path}")
    return False


def main() -> None:
    parser = argparse.ArgumentParser(
        description="ייצור דיאגרמות Mermaid ממכונת המצבים"
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--update", type=Path, metavar="FILE", help="עדכון סעיף הדיאגרמות בקובץ markdown")
    group.add_argument("--check", type=Path, metavar="FILE", help="בדיקה שהדיאגרמות בקובץ מסונכרנות (ל-CI)")
    args = parser.parse_args()

    markdown = format_diagrams_as_markdown(generate_all_diagrams())

    if args.check:
        sys.exit(0 if check_markdown_file(args.check, markdown) else 1)
    elif args.update:
        update_markdown_file(args.update, markdown)
    else:
        print(markdown)


if __name__ == "__main__":
    main()
