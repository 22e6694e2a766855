from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.models.errors import BridgeError


class EmbedClientManager:
    """
    Manager class to instantiate the configured embedding client and check
    that the models tenants embed with are available on it.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """Read the embedding engine name from env configuration.

        Returns:
            str: Capitalised engine name (e.g. "Ollama").
        """
        engine = self.helper_config.get_string_val("EMBED_ENGINE", default="ollama")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> EmbedClientInterface:
        """Instantiate the embedding client for the configured engine.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"EmbedClient{engine}"
        try:
            module = __import__(
                f"shared.clients.embed.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client = getattr(module, class_name)(helper_config=self.helper_config)
            self.logging.debug("Instantiated embedding client for engine: %s", engine)
            return client
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported embedding engine '%s'. Error: %s" % (engine, e))

    def get_client(self) -> EmbedClientInterface:
        """Return the instantiated embedding client."""
        return self.client

    async def do_check_models(self, model_ids: set[str]) -> list[str]:
        """Warn about embedding models that tenants use but the backend does not serve.

        Args:
            model_ids (set[str]): Embedding models referenced by tenant settings.

        Returns:
            list[str]: The missing models, sorted. Empty if the model list could not be fetched.
        """
        try:
            response = await self.client.do_fetch_models()
        except BridgeError as e:
            self.logging.warning("Could not list embedding models on '%s': %s", self.client.get_engine_name(), e.message)
            return []
        if not response.is_success:
            self.logging.warning("Listing embedding models failed with status %d", response.status_code)
            return []
        available = self.client.extract_model_names(response.json())
        missing = sorted(m for m in model_ids if not self.client.is_model_available(m, available))
        for model_id in missing:
            self.logging.warning(
                "Embedding model '%s' is configured for a tenant but not available on '%s'",
                model_id,
                self.client.get_engine_name(),
            )
        return missing
