from pydantic import BaseModel


class MonitorStatus(BaseModel):
    state: str
    target_tab_id: int | None = None
    pending_reload_tab_id: int | None = None
    scrape_in_flight: bool = False
    polling: bool = False
    poll_interval_seconds: float
    observers: int = 0
