import datetime as dt
import json
import logging
import time
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

import config
import ledger
from currency import extract_price, format_vnd
from forecast import predict_end_of_month
from graph import APOLOGY_MESSAGE, run_finance_agent
from sessions import ChatHistory, Session, SessionOwnerMismatch, SessionStore
from tools.expenses import AddExpenseArgs

logging.basicConfig(
    level=config.log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Finance Agent",
    description="Vietnamese expense assistant: tool-calling agent + end-of-month forecast",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionStore()


class ChatRequest(BaseModel):
    query: str
    owner_id: str = "default"
    # Reuse a server-side session history when set; otherwise the client
    # may send its own [{role, content}] history.
    session_id: Optional[str] = None
    history: list[dict] = []


class TransactionIn(BaseModel):
    owner_id: str = "default"
    # Omitted by receipt scanners that only have the raw text. Checked by
    # AddExpenseArgs, which rejects booleans and keeps integers exact.
    amount: Any = None
    category: str
    date: dt.date
    note: Optional[str] = None
    merchant: str = ""
    raw_text: str = ""


def _history_for(req: ChatRequest) -> ChatHistory:
    if req.session_id:
        try:
            return sessions.open(req.owner_id, req.session_id).history
        except SessionOwnerMismatch:
            logger.warning("session=%s refused for owner=%s", req.session_id, req.owner_id)
            raise HTTPException(status_code=403, detail="Session belongs to another owner")
    return ChatHistory.from_dicts(req.history)


@app.post("/chat")
async def chat(req: ChatRequest):
    start = time.time()
    history = _history_for(req)
    result = await run_finance_agent(req.query, owner_id=req.owner_id, history=history)

    return {
        "success": result["success"],
        "response": result["answer"],
        "tools_used": result["tools_used"],
        "session_id": req.session_id,
        "history": history.to_dicts(),
        "latency_seconds": round(time.time() - start, 2),
    }


@app.post("/chat/stream")
async def chat_stream(req: ChatRequest):
    """
    SSE variant of /chat: status events while the turn runs, then a meta
    event, then the answer word by word.
    """
    history = _history_for(req)

    async def generate():
        events: list[dict] = []

        async def on_status(status: str, message: str):
            events.append({"type": "status", "status": status, "message": message})

        result = await run_finance_agent(
            req.query, owner_id=req.owner_id, history=history, on_status=on_status,
        )
        for event in events:
            yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"

        meta = {
            "type": "meta",
            "success": result["success"],
            "tools_used": result["tools_used"],
        }
        yield f"data: {json.dumps(meta)}\n\n"

        words = result["answer"].split(" ")
        for i, word in enumerate(words):
            chunk = {
                "type": "token",
                "token": word + (" " if i < len(words) - 1 else ""),
                "done": i == len(words) - 1,
            }
            yield f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n"

        yield f"data: {json.dumps({'type': 'done'})}\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream")


@app.post("/sessions/{session_id}/reset")
def reset_session(session_id: str, owner_id: str = "default"):
    if not sessions.reset(session_id, owner_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "session_id": session_id}


@app.get("/forecast")
def forecast(
    owner_id: str = "default",
    budget: Optional[int] = Query(default=None, gt=0),
):
    result = predict_end_of_month(owner_id, budget=budget)
    logger.info("forecast owner=%s predicted=%d status=%s", owner_id, result.predicted_total, result.status)
    return {"success": True, "forecast": result.model_dump()}


@app.get("/transactions/recent")
def transactions_recent(owner_id: str = "default", limit: int = Query(default=10, ge=1, le=200)):
    transactions = ledger.recent_transactions(owner_id, limit=limit)
    return {
        "success": True,
        "count": len(transactions),
        "total_count": ledger.count_transactions(owner_id),
        "transactions": transactions,
    }


@app.get("/transactions/month/{year}/{month}")
def transactions_by_month(year: int, month: int, owner_id: str = "default"):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=422, detail="month must be between 1 and 12")
    transactions = ledger.month_transactions(owner_id, year, month)
    total = sum(t["amount"] for t in transactions)
    return {
        "success": True,
        "period": f"{month}/{year}",
        "count": len(transactions),
        "total": total,
        "totalFormatted": format_vnd(total),
        "transactions": transactions,
    }


@app.post("/transactions", status_code=201)
def ingest_transaction(tx: TransactionIn):
    """Ingestion path for collaborators such as a receipt scanner."""
    amount = tx.amount if tx.amount is not None else extract_price(tx.raw_text)
    try:
        args = AddExpenseArgs(amount=amount, category=tx.category, date=tx.date, note=tx.note)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()],
        )
    record = ledger.add_transaction(
        tx.owner_id, args.amount, args.category, args.date,
        note=args.note or "", merchant=tx.merchant, raw_text=tx.raw_text,
    )
    return {"success": True, "transaction": record}


@app.delete("/transactions/{tx_id}")
def delete_transaction(tx_id: str, owner_id: str = "default"):
    if ledger.delete_transactions(owner_id, [tx_id]) == 0:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"success": True, "deleted": tx_id}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "sessions": len(sessions),
        "timestamp": datetime.utcnow().isoformat(),
    }


# ---------------------------------------------------------------------------
# WebSocket transport
# ---------------------------------------------------------------------------

async def _send(websocket: WebSocket, event: str, data: dict) -> bool:
    """Sends one event; returns False when the client is already gone."""
    try:
        await websocket.send_json({"event": event, "timestamp": datetime.utcnow().isoformat(), **data})
        return True
    except Exception as exc:
        logger.debug("dropping %s event: %s", event, exc)
        return False


def _valid_budget(budget) -> bool:
    if budget is None:
        return True
    return not isinstance(budget, bool) and isinstance(budget, (int, float)) and budget > 0


async def _dispatch(websocket: WebSocket, session: Session, data: dict) -> None:
    """Handles one inbound socket message for session."""
    kind = data.get("type", "user_message")

    if kind == "ping":
        await _send(websocket, "pong", {})

    elif kind == "reset":
        session.history.clear()
        await _send(websocket, "history_cleared", {"message": "Đã xóa lịch sử trò chuyện"})

    elif kind == "forecast":
        budget = data.get("budget")
        if not _valid_budget(budget):
            await _send(websocket, "error", {"message": "Ngân sách không hợp lệ"})
            return
        result = await run_in_threadpool(predict_end_of_month, session.owner_id, budget=budget)
        await _send(websocket, "forecast_result", {"success": True, "forecast": result.model_dump()})

    elif kind == "user_message":
        message = data.get("message")
        if message is not None and not isinstance(message, str):
            await _send(websocket, "error", {"message": "Định dạng tin nhắn không hợp lệ"})
            return
        message = (message or "").strip()
        if not message:
            await _send(websocket, "error", {"message": "Tin nhắn không được để trống"})
            return

        async def on_status(status: str, text: str):
            await _send(websocket, "agent_status", {"status": status, "message": text})

        await _send(websocket, "message_received", {"message": message})
        result = await run_finance_agent(
            message, owner_id=session.owner_id, history=session.history, on_status=on_status,
        )
        await _send(websocket, "agent_response", {
            "success": result["success"],
            "answer": result["answer"],
            "tools_used": result["tools_used"],
        })

    else:
        await _send(websocket, "error", {"message": f"Unknown message type: {kind}"})


@app.websocket("/ws")
async def chat_socket(websocket: WebSocket, owner_id: str = "default"):
    await websocket.accept()
    session = sessions.open(owner_id)
    logger.info("client connected session=%s owner=%s", session.session_id, owner_id)
    await _send(websocket, "connected", {
        "message": "Kết nối thành công với trợ lý tài chính!",
        "session_id": session.session_id,
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                data = None
            if not isinstance(data, dict):
                await _send(websocket, "error", {"message": "Định dạng tin nhắn không hợp lệ"})
                continue
            session.touch()

            # One failing message must not end the connection.
            try:
                await _dispatch(websocket, session, data)
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception("socket message failed session=%s", session.session_id)
                await _send(websocket, "error", {"message": APOLOGY_MESSAGE})

    except WebSocketDisconnect:
        logger.info("client disconnected session=%s", session.session_id)
    finally:
        sessions.close(session.session_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
