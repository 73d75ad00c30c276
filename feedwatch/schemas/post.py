from pydantic import BaseModel, ConfigDict, Field, field_validator

from feedwatch.services.timestamps import parse_instant, to_sortable_instant


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    display_timestamp: str
    sortable_instant: str

    @field_validator("sortable_instant")
    @classmethod
    def _canonical_instant(cls, value: str) -> str:
        dt = parse_instant(value)
        if dt is None:
            raise ValueError(f"not a valid ISO-8601 instant: {value!r}")
        return to_sortable_instant(dt)


class RetentionState(BaseModel):
    posts: list[Post] = []
    last_fetch_instant: str | None = None
    is_first_fetch: bool = True

    @property
    def known_ids(self) -> set[str]:
        return {post.id for post in self.posts}
