"""Fixed lines and vocabularies used by the conversation flow."""

# Spoken when the backend cannot produce a reply for a turn
FALLBACK_TURN_LINE = "I'm sorry, could you repeat that?"

# Spoken instead of a generated reply once the turn ceiling is exceeded
CLOSING_LINE = (
    "Thank you so much for your time today. I'll make sure our team follows up "
    "with everything we discussed. Have a great day!"
)

# Spoken when a gather came back without any recognized speech
NO_INPUT_LINE = "I'm sorry, I didn't catch that. Could you say that again?"

# Spoken after too many silent gathers in a row
SILENCE_GOODBYE_LINE = (
    "It seems like this isn't a good time. Thank you, and we'll be in touch. Goodbye!"
)

# Spoken when a speech event arrives for a call that has already ended
GOODBYE_LINE = "Thank you for your time. Goodbye!"

# Spoken when anything goes wrong while building a response document
APOLOGY_LINE = (
    "I apologize, but I'm having some technical difficulties. "
    "We'll call you back at a better time. Goodbye!"
)

FALLBACK_GREETING_TEMPLATE = (
    "Hi {lead_name}, this is {agent_name} calling from {company_name}. "
    "Do you have a quick moment to chat?"
)

GREETING_SCRIPT_PLACEHOLDER = "{lead_name}"

SENTIMENTS = ["positive", "neutral", "negative"]

INTEREST_LEVELS = ["high", "medium", "low", "none"]

OBJECTION_CATEGORIES = [
    "price",
    "competitor",
    "timing",
    "authority",
    "no_need",
    "trust",
    "other",
]

KNOWLEDGE_CONFIRMATION_TOKEN = "CONFIRMED"
