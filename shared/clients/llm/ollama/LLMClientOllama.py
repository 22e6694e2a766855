from shared.clients.llm.LLMClientInterface import GenerationResult, LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import BridgeError, ErrorKind


class LLMClientOllama(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="http://localhost:11434", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:11434"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    def _get_endpoint_models(self) -> str:
        return "/api/tags"

    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[dict], model_id: str) -> dict:
        """Build the Ollama chat request body.

        Returns:
            dict: {"model": "...", "messages": [...], "stream": False, "options": {...}}
        """
        return {
            "model": model_id,
            "messages": messages,
            "stream": False,
            "options": {"num_predict": self.max_tokens},
        }

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_model_names(self, response_data: dict) -> list[str]:
        return [model.get("name") for model in response_data.get("models", []) if model.get("name")]

    def extract_chat_response(self, response_data: dict) -> GenerationResult:
        """Extract the assistant reply text from an Ollama /api/chat response.

        Token usage is the sum of prompt and completion tokens as reported by Ollama.
        """
        message = response_data.get("message") or {}
        content = message.get("content")
        if content is None:
            raise BridgeError(
                ErrorKind.GENERATION_UNAVAILABLE,
                "Ollama chat response does not contain a valid message. "
                "Response keys: %s" % list(response_data.keys()),
            )
        token_count = int(response_data.get("prompt_eval_count") or 0) + int(response_data.get("eval_count") or 0)
        return GenerationResult(text=content, token_count=token_count)
