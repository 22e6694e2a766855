from abc import abstractmethod

import httpx
from pydantic import BaseModel
from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import RankedChunk
from shared.models.errors import ErrorKind


class GenerationResult(BaseModel):
    text: str
    token_count: int = 0


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config, tenants may override the model per request
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default="llama3.1")
        self.max_tokens = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_TOKENS", default=1000))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    def _get_unavailable_error_kind(self) -> ErrorKind:
        return ErrorKind.GENERATION_UNAVAILABLE

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_models(self) -> str:
        """Returns the endpoint path for model listing requests (e.g. "/api/tags")."""
        pass

    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict], model_id: str) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).
            model_id (str): The chat model to use.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    def get_messages(self, query: str, passages: list[RankedChunk]) -> list[dict]:
        """Build the chat messages for a question and its retrieved passages.

        Passages are numbered so the model can cite them as [1], [2], ...
        Without passages the model is told that no knowledge base content
        matched and must not invent facts about the tenant.

        Args:
            query (str): The user's question.
            passages (list[RankedChunk]): Retrieved context, best first.

        Returns:
            list[dict]: A system and a user message.
        """
        if not passages:
            system_prompt = (
                "You are a helpful assistant for a company knowledge base. "
                "No documents in the knowledge base matched the user's question. "
                "Say so briefly, then help in general terms without inventing company-specific facts."
            )
            return [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": query},
            ]

        context = "\n\n".join(
            f"[{idx}] {passage.title} ({passage.score * 100:.1f}% similarity): {passage.content}"
            for idx, passage in enumerate(passages, start=1)
        )
        system_prompt = (
            "You are a helpful assistant for a company knowledge base. "
            "Answer using the numbered context below. Reference the sources you rely on, "
            "e.g. \"According to the meeting notes [1]...\". If the context does not fully "
            "answer the question, say what you do know and what is missing.\n\n"
            f"Context:\n{context}"
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": query},
        ]

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
    def extract_chat_response(self, response_data: dict) -> GenerationResult:
        """Extract the assistant reply and token usage from a raw chat API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            GenerationResult: The reply text and the total token count.

        Raises:
            BridgeError: GENERATION_UNAVAILABLE if the response holds no reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_models(self) -> httpx.Response:
        """Fetch the list of available models from the backend."""
        return await self.do_request(method="GET", endpoint=self._get_endpoint_models())

    async def do_chat(self, messages: list[dict], model_id: str | None = None) -> GenerationResult:
        """Send a chat/completion request and return the assistant reply.

        Args:
            messages (list[dict]): OpenAI-format messages.
            model_id (str | None): Chat model, defaults to LLM_CHAT_MODEL.

        Returns:
            GenerationResult: The reply text and token usage.

        Raises:
            BridgeError: GENERATION_UNAVAILABLE if the backend fails or answers with an error.
        """
        body = self.get_chat_payload(messages, model_id or self.chat_model)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        return self.extract_chat_response(response.json())

    async def do_generate(self, query: str, passages: list[RankedChunk], model_id: str | None = None) -> GenerationResult:
        """Generate an answer to a question from retrieved passages.

        Args:
            query (str): The user's question.
            passages (list[RankedChunk]): Retrieved context; may be empty.
            model_id (str | None): Chat model to use.

        Returns:
            GenerationResult: The answer text and token usage.
        """
        return await self.do_chat(self.get_messages(query, passages), model_id=model_id)
