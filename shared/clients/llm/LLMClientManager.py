from shared.helper.HelperConfig import HelperConfig
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.models.errors import BridgeError


class LLMClientManager:
    """
    Manager class to instantiate the configured generation client and check
    that the chat models tenants answer with are available on it.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val("LLM_ENGINE", default="ollama")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> LLMClientInterface:
        """Instantiate the generation client for the configured engine.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"LLMClient{engine}"
        try:
            module = __import__(
                f"shared.clients.llm.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client = getattr(module, class_name)(helper_config=self.helper_config)
            self.logging.debug("Instantiated LLM client for engine: %s", engine)
            return client
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported LLM engine '%s'. Error: %s" % (engine, e))

    def get_client(self) -> LLMClientInterface:
        return self.client

    async def do_check_models(self, model_ids: set[str]) -> list[str]:
        """Warn about chat models that tenants use but the backend does not serve.

        Returns:
            list[str]: The missing models, sorted. Empty if the model list could not be fetched.
        """
        try:
            response = await self.client.do_fetch_models()
        except BridgeError as e:
            self.logging.warning("Could not list chat models on '%s': %s", self.client.get_engine_name(), e.message)
            return []
        if not response.is_success:
            self.logging.warning("Listing chat models failed with status %d", response.status_code)
            return []
        available = self.client.extract_model_names(response.json())
        missing = sorted(m for m in model_ids if not self.client.is_model_available(m, available))
        for model_id in missing:
            self.logging.warning(
                "Chat model '%s' is configured for a tenant but not available on '%s'",
                model_id,
                self.client.get_engine_name(),
            )
        return missing
