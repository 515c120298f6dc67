import logging
import openai
from .errors import LLMError
from .prompts import SYSTEM_PROMPT
from . import settings

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(self, api_key: str = None, model: str = None, temperature: float = None, max_tokens: int = None, client=None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise LLMError("OPENAI_API_KEY is not set; please configure your .env")
            if not self.api_key.startswith("sk-"):
                logger.warning("OPENAI_API_KEY does not start with 'sk-'. Check if this is intentional.")
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    @property
    def model_info(self) -> dict:
        return {"provider": "openai", "model": self.model, "temperature": self.temperature}

    def generate_text(self, prompt: str, *, json_mode: bool = False) -> str:
        logger.info(f"Calling OpenAI ({self.model}), prompt length {len(prompt)}")
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            client = self._get_client()
            resp = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                **kwargs,
            )
        except openai.RateLimitError as e:
            logger.error(f"OpenAI rate limit or quota error: {str(e)}")
            if getattr(e, "code", None) == "insufficient_quota":
                raise LLMError("OpenAI quota exceeded. Please check billing at https://platform.openai.com/account/billing") from e
            raise LLMError("OpenAI rate limit reached. Please retry shortly.") from e
        except openai.AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {str(e)}")
            raise LLMError("Invalid OpenAI API key. Please check OPENAI_API_KEY in your environment.") from e
        except openai.NotFoundError as e:
            logger.error(f"OpenAI model lookup failed: {str(e)}")
            raise LLMError(f"OpenAI model {self.model} not found. Please check if the model is available.") from e
        except openai.OpenAIError as e:
            logger.error(f"OpenAI API call failed: {str(e)}")
            raise LLMError(f"LLM API error: {str(e) or 'Unknown error'}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content or not content.strip():
            raise LLMError("LLM returned empty response")
        logger.info("Successfully received response from OpenAI")
        return content
