from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr


class CheckRequest(BaseModel):
    identity: StrictStr = Field(validation_alias=AliasChoices("identity", "ip"))
    resource: StrictStr = Field(validation_alias=AliasChoices("resource", "endpoint"))
    max: StrictInt
    window_ms: StrictInt = Field(validation_alias=AliasChoices("windowMs", "window_ms"))

    model_config = ConfigDict(populate_by_name=True)


class CheckResponse(BaseModel):
    allowed: bool
    retry_after_ms: int | None = Field(default=None, alias="retryAfterMs")

    model_config = ConfigDict(populate_by_name=True)
