from abc import abstractmethod

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.models.errors import BridgeError, ErrorKind

from shared.helper.HelperConfig import HelperConfig

class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # default model, tenants may override it per request
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="nomic-embed-text")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    def _get_unavailable_error_kind(self) -> ErrorKind:
        return ErrorKind.EMBEDDING_UNAVAILABLE

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_models(self) -> str:
        """
        Returns the endpoint path for model listing requests.

        Returns:
            str: The endpoint path for model listing requests (e.g. "/api/tags")
        """
        pass

    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str], model_id: str) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.
            model_id (str): The embedding model to use.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_model_names(self, response_data: dict) -> list[str]:
        """Extract the served model names from a raw model listing response."""
        pass

    def is_model_available(self, model_id: str, available: list[str]) -> bool:
        """Return True if the model is served, accepting an implicit ":latest" tag."""
        return model_id in available or f"{model_id}:latest" in available

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            BridgeError: EMBEDDING_UNAVAILABLE if the response holds no usable vectors.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_models(self) -> httpx.Response:
        """Fetch the list of available embedding models from the backend.

        Returns:
            httpx.Response: The response containing the model list.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_models())

    async def do_embed(self, texts: list[str] | str, model_id: str | None = None) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        Args:
            texts (list[str] | str): One or more texts to embed.
            model_id (str | None): Embedding model, defaults to EMBED_MODEL.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            BridgeError: EMBEDDING_UNAVAILABLE on transport errors, non-200 status,
                or a response whose vector count does not match the inputs.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts, model_id or self.embed_model)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise BridgeError(
                ErrorKind.EMBEDDING_UNAVAILABLE,
                "Embedding request failed with status %d." % response.status_code,
                {"status_code": response.status_code},
            )
        vectors = self.extract_embeddings_from_response(response.json())
        if len(vectors) != len(texts):
            raise BridgeError(
                ErrorKind.EMBEDDING_UNAVAILABLE,
                f"Embedding backend returned {len(vectors)} vectors for {len(texts)} inputs.",
            )
        return vectors
