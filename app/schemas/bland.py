from pydantic import AliasChoices, BaseModel, Field

AI_SPEAKERS = {"assistant", "agent", "agent-action", "ai", "ai_agent"}


class OutboundCallResponse(BaseModel):
    status: str = ""  # "success" | "error"
    call_id: str | None = None
    message: str | None = None


class TranscriptEntry(BaseModel):
    user: str = Field(default="user", validation_alias=AliasChoices("user", "speaker", "role"))
    text: str | None = ""

    @property
    def is_human(self) -> bool:
        return self.user.lower() not in AI_SPEAKERS


class IVRInteraction(BaseModel):
    prompt: str | None = None
    selected_option: str | None = None


class CallDetailsResponse(BaseModel):
    call_id: str = ""
    status: str = ""  # queued | in-progress | completed | failed | cancelled | no-answer
    transcript: list[TranscriptEntry] = Field(
        default=[], validation_alias=AliasChoices("transcript", "transcripts")
    )
    ivr_interactions: list[IVRInteraction] = []
    call_length: float | None = None
    cost: float | None = Field(default=None, validation_alias=AliasChoices("cost", "price"))
    error_message: str | None = None
    # Carrier leg SID, reported when the call is dialled through the account's own Twilio numbers
    control_sid: str | None = Field(
        default=None, validation_alias=AliasChoices("control_sid", "twilio_call_sid", "call_sid")
    )

    def human_lines(self) -> list[str]:
        return [e.text for e in self.transcript if e.is_human and e.text]
