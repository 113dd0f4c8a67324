"""Provider administration schemas: connection tests and model discovery."""

from pydantic import BaseModel, Field


class ConnectionTestRequest(BaseModel):
    provider_type: str = Field(..., min_length=1, max_length=50)
    api_key: str = Field(..., min_length=1, repr=False)
    model: str | None = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    provider: str
    model: str | None = None


class ModelDiscoveryRequest(BaseModel):
    provider_type: str = Field(..., min_length=1, max_length=50)
    api_key: str = Field(..., min_length=1, repr=False)


class ModelItem(BaseModel):
    id: str
    name: str
    description: str = ""


class ModelDiscoveryResponse(BaseModel):
    success: bool
    provider: str
    models: list[ModelItem]
    message: str | None = None
