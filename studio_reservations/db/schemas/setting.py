from pydantic import BaseModel, Field


class CancellationPolicy(BaseModel):
    window_hours: int
    late_cancel_penalty: str
    no_show_penalty: str

    class Config:
        from_attributes = True


class CancellationPolicyUpdate(BaseModel):
    window_hours: int | None = Field(default=None, ge=0)
    late_cancel_penalty: str | None = None
    no_show_penalty: str | None = None
