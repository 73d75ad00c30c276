"""Messages exchanged between the observer UI, the orchestrator and the scrape worker.

Every message is one member of the ``Message`` tagged union; anything arriving
from outside goes through ``parse_message`` before it reaches the pipeline.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from feedwatch.schemas.post import Post


class FetchRequest(BaseModel):
    type: Literal["FETCH_REQUEST"] = "FETCH_REQUEST"


class StopRequest(BaseModel):
    type: Literal["STOP_REQUEST"] = "STOP_REQUEST"


class ExecuteScrape(BaseModel):
    type: Literal["EXECUTE_SCRAPE"] = "EXECUTE_SCRAPE"
    tab_id: int


class ScrapeComplete(BaseModel):
    type: Literal["SCRAPE_COMPLETE"] = "SCRAPE_COMPLETE"
    tab_id: int
    payload: list[Post] = []


class ScrapeError(BaseModel):
    type: Literal["SCRAPE_ERROR"] = "SCRAPE_ERROR"
    tab_id: int
    error: str


class FetchError(BaseModel):
    type: Literal["FETCH_ERROR"] = "FETCH_ERROR"
    error: str


class DataResponse(BaseModel):
    type: Literal["DATA_RESPONSE"] = "DATA_RESPONSE"
    payload: list[Post] = []
    new_count: int = 0


class PostsUpdated(BaseModel):
    type: Literal["POSTS_UPDATED"] = "POSTS_UPDATED"
    count: int
    is_first_fetch: bool


class MonitorStopped(BaseModel):
    type: Literal["MONITOR_STOPPED"] = "MONITOR_STOPPED"
    reason: str


Message = Annotated[
    FetchRequest
    | StopRequest
    | ExecuteScrape
    | ScrapeComplete
    | ScrapeError
    | FetchError
    | DataResponse
    | PostsUpdated
    | MonitorStopped,
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(data: dict[str, Any]) -> Message:
    """Validate a raw dict into a typed message. Raises ``pydantic.ValidationError``."""
    return _message_adapter.validate_python(data)
