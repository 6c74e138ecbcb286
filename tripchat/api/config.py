# tripchat/api/config.py
"""Configuration management for the travel chat client."""
import os
from dotenv import load_dotenv

load_dotenv()

# Doubao (Volcano Ark) speaks the OpenAI chat-completions protocol.
DEFAULT_LLM_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"
DEFAULT_LLM_MODEL = "doubao-seed-1-6-flash-250828"

GEOCODER_PROVIDERS = ("amap", "google")


def get_llm_config():
    """Get chat model configuration."""
    return {
        "api_key": os.getenv("LLM_API_KEY") or os.getenv("DOUBAO_API_KEY", ""),
        "base_url": os.getenv("LLM_BASE_URL", DEFAULT_LLM_BASE_URL),
        "model": os.getenv("LLM_MODEL", DEFAULT_LLM_MODEL),
        "title_max_input_chars": int(os.getenv("TITLE_MAX_INPUT_CHARS", "200")),
    }


def get_geocoding_config():
    """Get geocoding backend configuration."""
    provider = os.getenv("GEOCODER_PROVIDER", "amap").lower()
    if provider not in GEOCODER_PROVIDERS:
        raise ValueError(f"Invalid GEOCODER_PROVIDER. Must be one of: {', '.join(GEOCODER_PROVIDERS)}")

    return {
        "provider": provider,
        "amap_api_key": os.getenv("AMAP_API_KEY", ""),
        # The browser map SDK uses a separate key from the web-service API.
        "amap_js_key": os.getenv("AMAP_JS_KEY", ""),
        "google_api_key": os.getenv("GOOGLE_MAPS_API_KEY", ""),
        "timeout_seconds": float(os.getenv("GEOCODER_TIMEOUT_SECONDS", "5")),
    }


def get_enrichment_config():
    """Get rate-limit and fallback tuning for itinerary enrichment."""
    return {
        "request_delay": int(os.getenv("GEOCODE_REQUEST_DELAY_MS", "150")) / 1000,
        "readiness_wait": int(os.getenv("GEOCODER_READY_WAIT_MS", "1000")) / 1000,
        "jitter_degrees": float(os.getenv("GEOCODE_JITTER_DEGREES", "0.0025")),
    }


def get_port():
    """Get port configuration."""
    return int(os.getenv("PORT", 5000))
