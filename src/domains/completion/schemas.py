from pydantic import BaseModel
from typing import Optional

from src.domains.rescuers.schemas import Rescuer
from src.domains.tickets.schemas import Ticket


class CompletionResponse(BaseModel):
    ticket: Ticket
    rescuer: Optional[Rescuer] = None
    reward_amount: Optional[float] = None
    currency: Optional[str] = None
    already_completed: bool = False
    payout_requested: bool = False
