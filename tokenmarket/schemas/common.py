from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    listings_count: int
    open_listings_count: int
    events_count: int
