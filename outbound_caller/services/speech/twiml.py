"""TwiML response documents for the voice webhooks."""
from typing import Optional

from twilio.twiml.voice_response import Gather, VoiceResponse

from outbound_caller.core.config import settings
from outbound_caller.services.agent.constants import APOLOGY_LINE


class TwimlBuilder:
    """Builds the documents Twilio executes on a live call."""

    def __init__(self, voice: Optional[str] = None, language: Optional[str] = None):
        self.voice = voice or settings.tts_voice
        self.language = language or settings.speech_language

    def speak_and_listen(self, text: str, action_url: str) -> str:
        """
        Speak ``text`` then listen for speech, posting it to ``action_url``.

        If the gather times out without speech, Twilio falls through to the
        redirect and posts to the same URL with no SpeechResult.
        """
        response = VoiceResponse()
        gather = Gather(
            input="speech",
            action=action_url,
            method="POST",
            speech_timeout="auto",
            language=self.language,
        )
        gather.say(text, voice=self.voice)
        response.append(gather)
        response.redirect(action_url, method="POST")
        return str(response)

    def speak_and_hang_up(self, text: str) -> str:
        """Speak ``text`` and end the call."""
        response = VoiceResponse()
        response.say(text, voice=self.voice)
        response.hangup()
        return str(response)

    def apology(self) -> str:
        """Document used whenever building a real response failed."""
        return self.speak_and_hang_up(APOLOGY_LINE)
