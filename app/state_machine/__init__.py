"""
State Machine Module for Conversation Flows
"""
from app.state_machine.states import ConversationState, MenuAction
from app.state_machine.context import ConversationContext
from app.state_machine.menu import Menu, MenuOption

__all__ = ["ConversationState", "MenuAction", "ConversationContext", "Menu", "MenuOption"]
