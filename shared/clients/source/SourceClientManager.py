from shared.helper.HelperConfig import HelperConfig
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.models.errors import BridgeError, ErrorKind

class SourceClientManager:
    """
    Manager class to handle multiple source clients based on configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.clients = self._initialize_clients()

    def _get_engines_from_env(self) -> list[str]:
        """
        Reads the list of source engines from ENV configuration.

        Returns:
            list[str]: A list of source engine names.

        Raises:
            ValueError: If no source engines are specified in the configuration.
        """
        engines = self.helper_config.get_list_val("SOURCE_ENGINES", default=["notion"])
        if not engines:
            raise ValueError("No source engines specified in configuration.")

        #lowercase all and uppercase first letter for better comparison and display
        engines = [engine.strip().lower() for engine in engines]
        engines = [engine.capitalize() for engine in engines]
        return engines

    def _initialize_clients(self) -> dict[str, SourceClientInterface]:
        """
        Initializes source clients based on the engines specified in the configuration.

        Returns:
            dict[str, SourceClientInterface]: Client instances keyed by lowercase engine name.

        Raises:
            ValueError: If an engine is unsupported or no client could be instantiated.
        """
        clients = {}
        for engine in self._get_engines_from_env():
            className = f"SourceClient{engine}"
            # try to import the class from shared.clients.source.{engine}
            try:
                module = __import__(
                    f"shared.clients.source.{engine.lower()}.{className}",
                    fromlist=[className],
                )
                client_class = getattr(module, className)
                client_instance = client_class(helper_config=self.helper_config)
                clients[client_instance.get_engine_name()] = client_instance
                self.logging.debug(f"Instantiated source client for engine: {engine}")
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported source engine specified: '{engine}'. Error: {e}")
        if not clients:
            raise ValueError("No valid source clients could be instantiated from the specified engines.")
        return clients

    def get_clients(self) -> list[SourceClientInterface]:
        """
        Returns the list of instantiated source clients.
        """
        return list(self.clients.values())

    def get_client(self, engine: str) -> SourceClientInterface:
        """
        Returns the source client for an engine name.

        Raises:
            BridgeError: UNKNOWN_ENGINE if the engine is not configured.
        """
        client = self.clients.get((engine or "").strip().lower())
        if client is None:
            raise BridgeError(ErrorKind.UNKNOWN_ENGINE, f"Source engine '{engine}' is not configured.")
        return client
