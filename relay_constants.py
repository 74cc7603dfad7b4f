"""Shared constants for Tavern Relay.

Import-safe module with no dependencies -- can be imported from anywhere
without risk of circular imports.
"""

BATTLENET_TOKEN_URL = "https://oauth.battle.net/token"
BATTLENET_PROFILE_URL_TEMPLATE = (
    "https://us.api.blizzard.com/profile/wow/character/nightslayer/{name}"
    "?namespace=profile-classicann-us&locale=en_US"
)
DEFAULT_REALM_TITLE = "Nightslayer"

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
CHAT_TEMPERATURE = 0.4
# Chat-template delimiters the model must never continue past
DEFAULT_STOP_SEQUENCES = ("<|im_end|>", "<|im_start|>", "</s>", "[INST]")

HISTORY_LIMIT = 10
TOKEN_SAFETY_MARGIN_SECONDS = 60

RESPONSE_CAP_DEFAULT = 10
RESPONSE_CAP_MIN = 1
RESPONSE_CAP_MAX = 500

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful Discord bot. Be concise and friendly in your responses."
)
