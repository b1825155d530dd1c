import json
import logging
from datetime import date
from typing import Awaitable, Callable, Optional

import anthropic
from langgraph.graph import StateGraph, END

import config
from ledger import CATEGORIES
from sessions import ChatHistory
from state import AgentState
from tools import TOOL_REGISTRY, execute_tool, tool_definitions

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "Xin lỗi, đã có lỗi xảy ra khi xử lý yêu cầu."
EMPTY_QUERY_MESSAGE = "Tin nhắn không được để trống."

StatusCallback = Callable[[str, str], Awaitable[None]]


class ProviderError(Exception):
    """The language-model provider was unreachable, rate-limited or rejected the call."""


def build_system_prompt(today: date) -> str:
    tool_lines = "\n".join(
        f"{i}. {name} - {spec['description'].split('. ')[0]}"
        for i, (name, spec) in enumerate(TOOL_REGISTRY.items(), start=1)
    )
    return f"""Bạn là trợ lý tài chính thông minh giúp người Việt quản lý chi tiêu.

Khả năng:
1. Ghi nhận chi tiêu
2. Xem báo cáo và thống kê chi tiêu theo tháng
3. Xóa giao dịch
4. Tra cứu giá Bitcoin, tỷ giá USD

Hướng dẫn chuẩn hóa:
- "50k" = 50000, "30 nghìn" = 30000, "2 triệu" = 2000000, "1 củ" = 1000000
- "hôm nay" = {today.isoformat()}
- "hôm qua" = ngày trước {today.isoformat()}
- "tháng này" = {today.month}/{today.year}
- Phân loại (category): {", ".join(CATEGORIES)}
- Số tiền luôn là số nguyên đồng, ngày luôn theo định dạng YYYY-MM-DD

Ngày hiện tại: {today.strftime("%d/%m/%Y")}

Bạn có các công cụ sau:
{tool_lines}

Nếu người dùng chỉ chào hỏi hoặc trò chuyện, trả lời trực tiếp, không gọi công cụ.
Không bao giờ bịa số liệu: mọi con số phải lấy từ kết quả công cụ.

QUAN TRỌNG: Trả lời NGẮN GỌN, CHỈ 1-2 CÂU. Không giải thích dài dòng.
Ví dụ:
- "✅ Đã lưu chi tiêu 50.000đ cho Food"
- "📊 Tháng này bạn chi 2.5 triệu đồng"
- "💰 Bitcoin hiện tại: $65,000"

Hãy thân thiện nhưng ngắn gọn bằng tiếng Việt."""


def _get_client() -> anthropic.AsyncAnthropic:
    return anthropic.AsyncAnthropic(api_key=config.anthropic_api_key())


async def _invoke_model(system_prompt: str, api_messages: list[dict]):
    """One Messages API call with the full tool registry bound."""
    client = _get_client()
    try:
        return await client.messages.create(
            model=config.agent_model(),
            max_tokens=config.agent_max_tokens(),
            temperature=config.agent_temperature(),
            system=system_prompt,
            messages=api_messages,
            tools=tool_definitions(),
            timeout=config.agent_timeout(),
        )
    except anthropic.APIError as exc:
        raise ProviderError(f"{type(exc).__name__}: {exc}") from exc


def _block_to_dict(block) -> dict:
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {"type": "text", "text": getattr(block, "text", "")}


def _text_of(response) -> str:
    return "".join(
        getattr(b, "text", "") for b in response.content if b.type == "text"
    ).strip()


def _history_to_api(messages: list) -> list[dict]:
    api_messages = []
    for m in messages:
        if hasattr(m, "type"):
            role = "user" if m.type == "human" else "assistant"
            api_messages.append({"role": role, "content": m.content})
    return api_messages


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

async def compose_node(state: AgentState) -> AgentState:
    """System prompt + capped history + the new user message."""
    today = date.fromisoformat(state["today"])
    api_messages = _history_to_api(state.get("messages", []))
    api_messages.append({"role": "user", "content": state["user_query"]})
    return {
        **state,
        "system_prompt": build_system_prompt(today),
        "api_messages": api_messages,
    }


async def model_node(state: AgentState) -> AgentState:
    """
    First model call. Plain text ends the turn; tool_use blocks are recorded
    as tool calls and the assistant message is kept for the tool round.
    """
    try:
        response = await _invoke_model(state["system_prompt"], state["api_messages"])
    except Exception as exc:
        logger.warning("model call failed owner=%s: %s", state["owner_id"], exc)
        return {**state, "error": str(exc)}

    tool_calls = [
        {"name": b.name, "arguments": dict(b.input or {}), "call_id": b.id}
        for b in response.content
        if b.type == "tool_use"
    ]

    if not tool_calls:
        return {**state, "tool_calls": [], "final_response": _text_of(response)}

    logger.info(
        "owner=%s requested tools: %s",
        state["owner_id"],
        ", ".join(c["name"] for c in tool_calls),
    )
    api_messages = list(state["api_messages"])
    api_messages.append(
        {"role": "assistant", "content": [_block_to_dict(b) for b in response.content]}
    )
    return {**state, "tool_calls": tool_calls, "api_messages": api_messages}


async def tools_node(state: AgentState) -> AgentState:
    """
    Runs every requested tool once, in order, and appends the results as
    tool_result observations. Failures stay textual; the loop continues.
    """
    results = []
    observations = []
    try:
        for call in state["tool_calls"]:
            result = await execute_tool(call["name"], call["arguments"], state["owner_id"])
            if not result.get("success"):
                logger.warning(
                    "tool %s failed owner=%s: %s %s",
                    call["name"], state["owner_id"], result.get("error"), result.get("message"),
                )
            results.append(result)
            observations.append({
                "type": "tool_result",
                "tool_use_id": call["call_id"],
                "content": json.dumps(result, ensure_ascii=False, default=str),
                "is_error": not result.get("success", False),
            })
    except Exception as exc:
        logger.exception("tool dispatch failed owner=%s", state["owner_id"])
        return {**state, "tool_results": results, "error": str(exc)}

    api_messages = list(state["api_messages"])
    api_messages.append({"role": "user", "content": observations})
    return {**state, "tool_results": results, "api_messages": api_messages}


def _fallback_from_results(results: list[dict]) -> str:
    lines = []
    for r in results:
        message = (r.get("result") or {}).get("message") if r.get("success") else None
        if message:
            lines.append(message)
    return "\n".join(lines)


async def finalize_node(state: AgentState) -> AgentState:
    """
    Second and last model call. Any further tool requests in this reply are
    ignored; only its text is used.
    """
    try:
        response = await _invoke_model(state["system_prompt"], state["api_messages"])
    except Exception as exc:
        logger.warning("finalize call failed owner=%s: %s", state["owner_id"], exc)
        return {**state, "error": str(exc)}

    answer = _text_of(response) or _fallback_from_results(state.get("tool_results", []))
    if not answer:
        return {**state, "error": "model returned no text after tool dispatch"}
    return {**state, "final_response": answer}


async def respond_node(state: AgentState) -> AgentState:
    if state.get("error") or not state.get("final_response"):
        return {
            **state,
            "final_response": APOLOGY_MESSAGE,
            "success": False,
            "error": state.get("error") or "model returned an empty answer",
        }
    return {**state, "success": True}


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def _route_after_model(state: AgentState) -> str:
    if state.get("error"):
        return "respond"
    if state.get("tool_calls"):
        return "tools"
    return "respond"


def _route_after_tools(state: AgentState) -> str:
    return "respond" if state.get("error") else "finalize"


def build_graph():
    """
    compose → model ─┬─────────────────────────→ respond → END
                     └→ tools → finalize ───────↗
    Exactly one tool round and at most two model calls per turn.
    """
    g = StateGraph(AgentState)

    g.add_node("compose", compose_node)
    g.add_node("model", model_node)
    g.add_node("tools", tools_node)
    g.add_node("finalize", finalize_node)
    g.add_node("respond", respond_node)

    g.set_entry_point("compose")
    g.add_edge("compose", "model")
    g.add_conditional_edges("model", _route_after_model, {"tools": "tools", "respond": "respond"})
    g.add_conditional_edges("tools", _route_after_tools, {"finalize": "finalize", "respond": "respond"})
    g.add_edge("finalize", "respond")
    g.add_edge("respond", END)

    return g.compile()


graph = build_graph()


# ---------------------------------------------------------------------------
# Turn runner
# ---------------------------------------------------------------------------

def _status_after(node: str, update: dict) -> Optional[tuple[str, str]]:
    """Progress event to emit once `node` has finished."""
    if node == "compose":
        return "thinking", "Đang xử lý..."
    if node == "model" and update.get("tool_calls") and not update.get("error"):
        names = ", ".join(c["name"] for c in update["tool_calls"])
        return "tool_dispatch", f"Đang thực hiện: {names}"
    if node == "tools" and not update.get("error"):
        return "finalizing", "Đang tổng hợp kết quả..."
    return None


async def _emit(on_status: Optional[StatusCallback], status: str, message: str) -> None:
    if on_status is None:
        return
    try:
        await on_status(status, message)
    except Exception as exc:
        # Progress events are advisory; a departed client must not fail the turn.
        logger.debug("status relay dropped: %s", exc)


async def run_finance_agent(
    user_query: str,
    owner_id: str = "default",
    history: Optional[ChatHistory] = None,
    on_status: Optional[StatusCallback] = None,
    today: Optional[date] = None,
) -> dict:
    """
    Runs one conversational turn and returns
    {success, answer, error, tool_calls, tools_used, tool_results}.

    On success the exchange is appended to `history` (oldest exchange
    evicted once the window is full). On failure the answer is a generic
    apology and the history is left untouched.
    """
    history = history if history is not None else ChatHistory()
    query = (user_query or "").strip()
    if not query:
        return {
            "success": False,
            "answer": EMPTY_QUERY_MESSAGE,
            "error": "empty_query",
            "tool_calls": [],
            "tools_used": [],
            "tool_results": [],
        }

    logger.info("turn owner=%s history=%d query=%r", owner_id, len(history), query[:80])

    initial_state: AgentState = {
        "messages": history.messages(),
        "user_query": query,
        "owner_id": owner_id,
        "today": (today or date.today()).isoformat(),
        "system_prompt": "",
        "api_messages": [],
        "tool_calls": [],
        "tool_results": [],
        "final_response": None,
        "success": False,
        "error": None,
    }

    result: dict = dict(initial_state)
    try:
        async for chunk in graph.astream(initial_state, stream_mode="updates"):
            for node, update in chunk.items():
                result.update(update or {})
                status = _status_after(node, update or {})
                if status:
                    await _emit(on_status, *status)
    except Exception as exc:
        logger.exception("agent turn crashed owner=%s", owner_id)
        result.update({"success": False, "final_response": APOLOGY_MESSAGE, "error": str(exc)})

    if result.get("success"):
        history.record(query, result["final_response"])
    else:
        logger.warning("turn failed owner=%s error=%s", owner_id, result.get("error"))

    return {
        "success": bool(result.get("success")),
        "answer": result.get("final_response") or APOLOGY_MESSAGE,
        "error": result.get("error"),
        "tool_calls": result.get("tool_calls", []),
        "tools_used": [r.get("tool_name") for r in result.get("tool_results", [])],
        "tool_results": result.get("tool_results", []),
    }
