from typing import TypedDict, Optional
from langchain_core.messages import BaseMessage


class AgentState(TypedDict):
    # Conversation
    messages: list[BaseMessage]   # capped chat history, oldest first
    user_query: str
    owner_id: str
    today: str                    # ISO date the turn is anchored to

    # Running Anthropic message sequence for this turn (system prompt kept separately)
    system_prompt: str
    api_messages: list[dict]

    # Tool dispatch, one round at most
    # tool_calls holds {name, arguments, call_id} as requested by the model.
    tool_calls: list[dict]
    tool_results: list[dict]

    # Response
    final_response: Optional[str]
    success: bool
    error: Optional[str]
