from pydantic_settings import BaseSettings, SettingsConfigDict


class GeminiConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GEMINI_")

    api_key: str | None = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/"
    text_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    voice: str = "Kore"
    timeout: float = 60 * 2
