from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    anthropic_api_key: str
    anthropic_model: str = "claude-sonnet-4-20250514"
    bland_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_hold_music_url: str = (
        "http://com.twilio.sounds.music.s3.amazonaws.com/MARKOVICHAMP-Borghestral.mp3"
    )
    twilio_resume_url: str = ""
    sendgrid_api_key: str = ""
    email_from: str = ""
    fallback_callback_number: str = ""
    store_dir: str = ""
    log_level: str = "INFO"

    max_questions: int = 4
    question_min_length: int = 10
    question_max_length: int = 150

    max_retries: int = 2
    poll_interval_seconds: float = 3.0
    max_polls: int = 400
    max_call_duration_minutes: int = 15
    fallback_triggers: str = "need more information,cannot proceed,missing details"
    max_fallback_episodes: int = 2
    max_cached_complaints: int = 1000

    @property
    def fallback_trigger_list(self) -> list[str]:
        return [t.strip() for t in self.fallback_triggers.split(",") if t.strip()]
