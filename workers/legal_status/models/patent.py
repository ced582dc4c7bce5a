"""Patent data models for the legal status engine."""

from typing import Optional
from pydantic import BaseModel


class PatentSummary(BaseModel):
    """Minimal patent row returned when listing a portfolio."""
    id: str
    pub_number: Optional[str] = None
    jurisdiction: Optional[str] = None
    portfolio_id: Optional[str] = None
