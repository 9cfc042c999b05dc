from pydantic import BaseModel, field_validator


class ConnectReaderRequest(BaseModel):
    token: str

    @field_validator("token")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class ConnectReaderResponse(BaseModel):
    success: bool
    error: str | None = None
