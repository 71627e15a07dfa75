"""
Conversation State Machine

One inbound message drives exactly one transition: load the user's active
conversation, dispatch on its state, persist the new state and context once,
and return the reply text. Nothing is raised to the caller; any failure is
logged and answered with a generic apology.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.core.exceptions import (
    AuthorizationException,
    InvalidStateError,
    InvalidStateTransitionError,
    MileageDecreaseError,
)
from app.core.logging import get_logger
from app.core.validation import MileageValidator
from app.db.models.conversation import Conversation
from app.db.models.user import User
from app.domain.services.fleet_service import FleetService
from app.domain.services.user_service import UserService
from app.state_machine.context import ConversationContext
from app.state_machine.conversation_store import ConversationStore
from app.state_machine.menu import Menu
from app.state_machine.menu_builder import MenuBuilder
from app.state_machine.messages import InboundMessage, ProcessMessageResult
from app.state_machine.response_generator import BotErrorCode, ResponseGenerator
from app.state_machine.states import (
    CONVERSATION_TRANSITIONS,
    ConversationState,
    MenuAction,
    is_valid_transition,
)

logger = get_logger(__name__)

AFFIRMATIVE_TOKENS = {"1", "כן"}
NEGATIVE_TOKENS = {"2", "לא"}


@dataclass
class _Outcome:
    """תוצאת handler; context=None פירושו איפוס ל-context ריק"""

    response: str
    state: ConversationState
    context: Optional[ConversationContext]
    should_end: bool = False


_Handler = Callable[[User, str, ConversationContext], Awaitable[_Outcome]]


class StateMachine:
    """Drives the conversation of a single user, one message at a time"""

    def __init__(
        self,
        store: ConversationStore,
        menu_builder: MenuBuilder,
        responses: Optional[ResponseGenerator] = None,
        fleet: Optional[FleetService] = None,
        users: Optional[UserService] = None,
        max_errors: int = 3,
    ):
        if max_errors < 1:
            raise ValueError("max_errors must be at least 1")
        self.store = store
        self.menus = menu_builder
        self.responses = responses or ResponseGenerator()
        self.fleet = fleet or menu_builder.fleet
        self.users = users or menu_builder.users
        self.max_errors = max_errors

    async def process_transition(self, user: User, message: InboundMessage) -> ProcessMessageResult:
        """
        Apply one inbound message to the user's conversation.

        Never raises. On failure the session is rolled back, the last stored
        conversation (or an in-memory IDLE placeholder) is returned with a
        generic apology and metadata["error"].
        """
        try:
            latest = await self.store.get_latest(user.id)
            if latest is not None and self.store.is_expired(latest):
                logger.info(
                    "Conversation expired, starting over",
                    extra_data={"user_id": user.id, "state": latest.state}
                )
                await self.store.delete(user.id)
            conversation = await self.store.get_or_create(user.id)

            current_state = self._parse_state(conversation.state, user.id)
            context = ConversationContext.from_storage(conversation.context)
            body = (message.body or "").strip()

            handler = self._get_handler(current_state)
            outcome = await handler(user, body, context)

            if not is_valid_transition(current_state, outcome.state):
                raise InvalidStateTransitionError(current_state.value, outcome.state.value, user.id)

            conversation = await self._persist(user.id, outcome)

            logger.info(
                "Conversation transition",
                extra_data={
                    "user_id": user.id,
                    "message_id": message.message_id,
                    "from_state": current_state.value,
                    "to_state": outcome.state.value,
                    "should_end": outcome.should_end,
                }
            )
            return ProcessMessageResult(
                conversation=conversation,
                response=outcome.response,
                should_end_conversation=outcome.should_end,
                metadata={"previous_state": current_state.value},
            )

        except Exception as e:
            logger.error(
                "Failed to process conversation transition",
                extra_data={
                    "user_id": user.id,
                    "message_id": message.message_id,
                    "error": str(e),
                },
                exc_info=True
            )
            conversation = await self._recover(user.id)
            return ProcessMessageResult(
                conversation=conversation,
                response=self.responses.error(
                    BotErrorCode.STATE_TRANSITION_ERROR,
                    self.responses.generic_apology(),
                ),
                should_end_conversation=False,
                metadata={"error": str(e)},
            )

    async def reset_conversation(self, user_id: int) -> Conversation:
        """Back to IDLE with an empty context"""
        await self.store.get_or_create(user_id)
        conversation = await self.store.reset(user_id, ConversationState.IDLE)
        logger.info("Conversation reset", extra_data={"user_id": user_id})
        return conversation

    @staticmethod
    def validate_transition(current: ConversationState, target: ConversationState) -> bool:
        return is_valid_transition(current, target)

    @staticmethod
    def get_available_transitions(state: ConversationState) -> list[ConversationState]:
        return list(CONVERSATION_TRANSITIONS.get(state, []))

    def _parse_state(self, value: str, user_id: int) -> ConversationState:
        try:
            return ConversationState(value)
        except ValueError:
            raise InvalidStateError(value, user_id)

    def _get_handler(self, state: ConversationState) -> _Handler:
        """Get handler function for state"""
        handlers: dict[ConversationState, _Handler] = {
            ConversationState.IDLE: self._handle_idle,
            ConversationState.AWAITING_MENU_SELECTION: self._handle_menu_selection,
            ConversationState.AWAITING_MOTORCYCLE_SELECTION: self._handle_motorcycle_selection,
            ConversationState.AWAITING_MILEAGE_INPUT: self._handle_mileage_input,
            ConversationState.AWAITING_MOTORCYCLE_DATA: self._handle_motorcycle_data,
            ConversationState.AWAITING_CONFIRMATION: self._handle_confirmation,
        }
        return handlers[state]

    async def _persist(self, user_id: int, outcome: _Outcome) -> Conversation:
        if outcome.context is None:
            return await self.store.reset(user_id, outcome.state)
        return await self.store.update_state(user_id, outcome.state, outcome.context.to_storage())

    async def _recover(self, user_id: int) -> Conversation:
        """המצב האחרון שנשמר; אם גם הקריאה נכשלת: placeholder של IDLE בזיכרון"""
        try:
            await self.store.rollback()
            return await self.store.get_or_create(user_id)
        except Exception as e:
            logger.error(
                "Conversation recovery failed, using in-memory placeholder",
                extra_data={"user_id": user_id, "error": str(e)},
                exc_info=True
            )
            return Conversation(user_id=user_id, state=ConversationState.IDLE.value, context={})

    def _invalid_input(
        self,
        state: ConversationState,
        context: ConversationContext,
        response: str,
        user_id: int,
    ) -> _Outcome:
        """
        Count an invalid input.

        Reaching max_errors resets the conversation to IDLE with an empty
        context; the next message starts over with the welcome.
        """
        error_count = context.error_count + 1

        if error_count >= self.max_errors:
            logger.warning(
                "Too many invalid inputs, resetting conversation",
                extra_data={"user_id": user_id, "state": state.value, "error_count": error_count}
            )
            return _Outcome(
                response=self.responses.error(BotErrorCode.CONVERSATION_RESET),
                state=ConversationState.IDLE,
                context=None,
            )

        context.error_count = error_count
        return _Outcome(response=response, state=state, context=context)

    def _with_menu(self, text: str, menu: Menu) -> str:
        return f"{text}\n\n{self.responses.menu_message(menu)}"

    async def _main_menu_outcome(self, user: User, context: ConversationContext, text: Optional[str] = None) -> _Outcome:
        menu = await self.menus.build_main_menu(user.id)
        context.last_menu_selection = None
        context.error_count = 0
        context.motorcycle_page = 0
        response = self._with_menu(text, menu) if text else self.responses.menu_message(menu)
        return _Outcome(response=response, state=ConversationState.AWAITING_MENU_SELECTION, context=context)

    async def _handle_idle(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        # כל הודעה מעירה את הבוט, גם ריקה
        name = await self.users.get_display_name(user)
        return await self._main_menu_outcome(user, context, self.responses.welcome(name))

    async def _handle_menu_selection(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        if context.last_menu_selection == MenuAction.ADMIN_ACTIONS:
            try:
                admin_menu = await self.menus.build_admin_menu(user.id)
            except AuthorizationException:
                # ההרשאה בוטלה באמצע השיחה - חוזרים לתפריט הראשי
                context.last_menu_selection = None
            else:
                return await self._handle_admin_selection(user, body, context, admin_menu)

        menu = await self.menus.build_main_menu(user.id)
        option = menu.find_option(body)

        if option is None:
            return self._invalid_input(
                ConversationState.AWAITING_MENU_SELECTION,
                context,
                self._with_menu(
                    self.responses.error(
                        BotErrorCode.INVALID_MENU_SELECTION,
                        "בחירה לא תקינה. אנא בחר אפשרות מהתפריט.",
                    ),
                    menu,
                ),
                user.id,
            )

        if option.action in (MenuAction.REPORT_MILEAGE, MenuAction.VIEW_MAINTENANCE):
            context.last_menu_selection = option.action
            context.error_count = 0
            context.motorcycle_page = 0
            motorcycle_menu = await self.menus.build_motorcycle_selection_menu(user.id)
            return _Outcome(
                response=self.responses.menu_message(motorcycle_menu),
                state=ConversationState.AWAITING_MOTORCYCLE_SELECTION,
                context=context,
            )

        if option.action == MenuAction.ADMIN_ACTIONS:
            try:
                admin_menu = await self.menus.build_admin_menu(user.id)
            except AuthorizationException:
                logger.warning(
                    "Admin actions requested by non-admin user",
                    extra_data={"user_id": user.id}
                )
                return _Outcome(
                    response=self.responses.error(
                        BotErrorCode.UNAUTHORIZED,
                        "אין לך הרשאה לבצע פעולות אלה.",
                    ),
                    state=ConversationState.AWAITING_MENU_SELECTION,
                    context=context,
                )

            context.last_menu_selection = MenuAction.ADMIN_ACTIONS
            context.error_count = 0
            return _Outcome(
                response=self.responses.menu_message(admin_menu),
                state=ConversationState.AWAITING_MENU_SELECTION,
                context=context,
            )

        if option.action == MenuAction.END_CONVERSATION:
            return _Outcome(
                response=self.responses.success("conversation_ended"),
                state=ConversationState.IDLE,
                context=None,
                should_end=True,
            )

        logger.warning(
            "Unhandled main menu action",
            extra_data={"user_id": user.id, "action": option.action.value}
        )
        return _Outcome(
            response=self.responses.error(BotErrorCode.UNKNOWN_ACTION, "פעולה לא מוכרת."),
            state=ConversationState.AWAITING_MENU_SELECTION,
            context=context,
        )

    async def _handle_admin_selection(
        self,
        user: User,
        body: str,
        context: ConversationContext,
        admin_menu: Menu,
    ) -> _Outcome:
        option = admin_menu.find_option(body)

        if option is None:
            return self._invalid_input(
                ConversationState.AWAITING_MENU_SELECTION,
                context,
                self._with_menu(
                    self.responses.error(
                        BotErrorCode.INVALID_MENU_SELECTION,
                        "בחירה לא תקינה. אנא בחר אפשרות מתפריט האדמין.",
                    ),
                    admin_menu,
                ),
                user.id,
            )

        if option.action == MenuAction.BACK_TO_MAIN:
            return await self._main_menu_outcome(user, context)

        # ניהול הצי עצמו זמין דרך ה-API של האדמין
        logger.info(
            "Admin action not available in chat",
            extra_data={"user_id": user.id, "action": option.action.value}
        )
        return await self._main_menu_outcome(
            user,
            context,
            self.responses.error(BotErrorCode.NOT_IMPLEMENTED, "פעולה זו טרם מומשה."),
        )

    async def _handle_motorcycle_selection(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        menu = await self.menus.build_motorcycle_selection_menu(user.id, page=context.motorcycle_page)
        option = menu.find_option(body)

        if option is None:
            return self._invalid_input(
                ConversationState.AWAITING_MOTORCYCLE_SELECTION,
                context,
                self._with_menu(
                    self.responses.error(
                        BotErrorCode.INVALID_MOTORCYCLE_SELECTION,
                        "בחירת אופנוע לא תקינה. אנא בחר אופנוע מהרשימה.",
                    ),
                    menu,
                ),
                user.id,
            )

        if option.action in (MenuAction.BACK, MenuAction.BACK_TO_MAIN):
            return await self._main_menu_outcome(user, context)

        if option.action == MenuAction.SHOW_MORE_MOTORCYCLES:
            context.motorcycle_page += 1
            context.error_count = 0
            next_page = await self.menus.build_motorcycle_selection_menu(user.id, page=context.motorcycle_page)
            return _Outcome(
                response=self.responses.menu_message(next_page),
                state=ConversationState.AWAITING_MOTORCYCLE_SELECTION,
                context=context,
            )

        context.selected_motorcycle_id = option.value
        context.error_count = 0
        context.motorcycle_page = 0

        if context.last_menu_selection == MenuAction.VIEW_MAINTENANCE:
            motorcycle = await self.fleet.get_motorcycle(option.value)
            next_maintenance = await self.fleet.get_next_maintenance(motorcycle)
            acknowledgment = "\n\n".join([
                self.responses.success("motorcycle_selected", {"license_plate": motorcycle.license_plate}),
                self.responses.maintenance_reminder(next_maintenance),
            ])
            return await self._main_menu_outcome(user, context, acknowledgment)

        # report_mileage, וגם כוונה לא ידועה
        return _Outcome(
            response=self.responses.mileage_prompt(),
            state=ConversationState.AWAITING_MILEAGE_INPUT,
            context=context,
        )

    async def _handle_mileage_input(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        mileage = MileageValidator.parse(body)

        if mileage is None:
            return self._invalid_input(
                ConversationState.AWAITING_MILEAGE_INPUT,
                context,
                self.responses.error(BotErrorCode.INVALID_MILEAGE),
                user.id,
            )

        context.pending_mileage = mileage
        context.error_count = 0
        return _Outcome(
            response=self.responses.mileage_confirmation(mileage),
            state=ConversationState.AWAITING_CONFIRMATION,
            context=context,
        )

    async def _handle_motorcycle_data(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        return await self._main_menu_outcome(
            user,
            context,
            self.responses.error(BotErrorCode.NOT_IMPLEMENTED, "פעולה זו טרם מומשה."),
        )

    async def _handle_confirmation(self, user: User, body: str, context: ConversationContext) -> _Outcome:
        token = body.casefold()

        if (
            token in AFFIRMATIVE_TOKENS
            and context.pending_mileage is not None
            and context.selected_motorcycle_id is not None
        ):
            try:
                motorcycle = await self.fleet.report_mileage(
                    context.selected_motorcycle_id,
                    context.pending_mileage,
                    reported_by=user,
                )
            except MileageDecreaseError as e:
                context.pending_mileage = None
                return self._invalid_input(
                    ConversationState.AWAITING_MILEAGE_INPUT,
                    context,
                    "\n\n".join([
                        self.responses.error(BotErrorCode.INVALID_MILEAGE, e.message),
                        self.responses.mileage_prompt(),
                    ]),
                    user.id,
                )

            return _Outcome(
                response=self.responses.success(
                    "mileage_reported",
                    {"mileage": motorcycle.current_mileage, "license_plate": motorcycle.license_plate},
                ),
                state=ConversationState.IDLE,
                context=None,
                should_end=True,
            )

        if token in NEGATIVE_TOKENS:
            context.pending_mileage = None
            return await self._main_menu_outcome(user, context, self.responses.cancellation())

        if context.pending_mileage is None:
            # אין קריאה לאשר - מבקשים אותה שוב
            prompt = "\n\n".join([
                self.responses.error(BotErrorCode.INVALID_CONFIRMATION, "לא נמצא קילומטראז' לאישור."),
                self.responses.mileage_prompt(),
            ])
            if context.selected_motorcycle_id is not None:
                return self._invalid_input(ConversationState.AWAITING_MILEAGE_INPUT, context, prompt, user.id)
            return await self._main_menu_outcome(
                user,
                context,
                self.responses.error(BotErrorCode.INVALID_CONFIRMATION, "לא נבחר אופנוע לדיווח."),
            )

        # גם אישור בלי אופנוע נבחר נספר כקלט שגוי
        return self._invalid_input(
            ConversationState.AWAITING_CONFIRMATION,
            context,
            "\n\n".join([
                self.responses.error(
                    BotErrorCode.INVALID_CONFIRMATION,
                    'אנא השב "1" לאישור או "2" לביטול.',
                ),
                self.responses.mileage_confirmation(context.pending_mileage),
            ]),
            user.id,
        )
