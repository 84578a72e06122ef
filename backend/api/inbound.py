from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

router = APIRouter(prefix="/messages", tags=["messages"])


class InboundMessageRequest(BaseModel):
    identity: str = Field(min_length=1, max_length=64)
    text: str = Field(default="", max_length=4000)


class InboundMessageResponse(BaseModel):
    reply: str


@router.post("/inbound", response_model=InboundMessageResponse)
async def receive_message(body: InboundMessageRequest, request: Request):
    """Single funnel for channel adapters: one inbound text in, one reply out."""
    orchestrator = request.app.state.orchestrator
    reply = await orchestrator.handle_inbound_message(body.identity, body.text)
    return InboundMessageResponse(reply=reply)
