from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BridgeError, ErrorKind
from shared.models.sync import SourceItem, SourceListing, WebhookEvent


class SourceClientInterface(ClientInterface):
    """Capability to read items from an external knowledge source.

    Engines map their native payloads to SourceItem / SourceListing /
    WebhookEvent so the sync orchestrator never sees source-specific JSON.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.page_size = int(self.get_config_val("PAGE_SIZE", default=100, val_type="number"))

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def is_same_container(self, container_a: str | None, container_b: str | None) -> bool:
        """Compare two container IDs in the engine's canonical form."""
        if not container_a or not container_b:
            return False
        return self.normalize_id(container_a) == self.normalize_id(container_b)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "source"
        """
        return "source"

    def _get_unavailable_error_kind(self) -> ErrorKind:
        return ErrorKind.SOURCE_UNAVAILABLE

    def normalize_id(self, native_id: str) -> str:
        """Return the canonical form of a native ID. Engines override if IDs have variants."""
        return native_id.strip()

    ################ WEBHOOK ##################
    def get_webhook_secret(self) -> str:
        """
        Returns the shared secret used to sign webhook deliveries, or "" if unsigned.
        """
        return self.get_config_val("WEBHOOK_SECRET", default="", val_type="string")

    def has_webhook_secret(self) -> bool:
        return bool(self.get_webhook_secret())

    def has_credentials(self) -> bool:
        return self.has_config_val("API_KEY")

    @abstractmethod
    def get_signature_header(self) -> str:
        """
        Returns the name of the HTTP header carrying the webhook signature. E.g. "x-notion-signature"
        """
        pass

    @abstractmethod
    def get_timestamp_header(self) -> str:
        """
        Returns the name of the HTTP header carrying the webhook timestamp. E.g. "x-notion-timestamp"
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_item(self, native_id: str) -> str:
        """
        Returns the endpoint path for a single item (e.g. "/v1/pages/{id}").
        """
        pass

    @abstractmethod
    def _get_endpoint_item_content(self, native_id: str) -> str:
        """
        Returns the endpoint path for the content of an item (e.g. "/v1/blocks/{id}/children").
        """
        pass

    @abstractmethod
    def _get_endpoint_container_listing(self, container_id: str) -> str:
        """
        Returns the endpoint path for listing the items of a container (e.g. "/v1/databases/{id}/query").
        """
        pass

    ##########################################
    ############### PARSERS ##################
    ##########################################

    @abstractmethod
    def _parse_item(self, item_data: dict, content: str) -> SourceItem:
        """
        Build a SourceItem from the raw item payload and its already extracted text.
        """
        pass

    def _is_removed(self, item_data: dict) -> bool:
        """
        Returns True if the raw item payload marks the item as deleted or archived.
        """
        return False

    @abstractmethod
    def _parse_content_page(self, response_data: dict) -> tuple[list[str], str | None]:
        """
        Parse one page of item content.

        Returns:
            tuple[list[str], str | None]: Text lines of this page and the cursor of the next page, if any.
        """
        pass

    @abstractmethod
    def _parse_listing_page(self, response_data: dict) -> tuple[list[SourceListing], str | None]:
        """
        Parse one page of a container listing.

        Returns:
            tuple[list[SourceListing], str | None]: Listed items and the cursor of the next page, if any.
        """
        pass

    @abstractmethod
    def _extract_container_id(self, item_data: dict) -> str | None:
        """
        Returns the container ID from a raw item payload, if the item lives in one.
        """
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: dict) -> WebhookEvent:
        """
        Map a raw webhook payload to a WebhookEvent.

        Raises:
            BridgeError: INVALID_REQUEST if an item event carries no item ID.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    @abstractmethod
    async def _do_fetch_content_page(self, native_id: str, cursor: str | None) -> dict:
        pass

    @abstractmethod
    async def _do_fetch_listing_page(self, container_id: str, cursor: str | None) -> dict:
        pass

    async def _do_fetch_item_data(self, native_id: str) -> dict:
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_item(native_id))
        if response.status_code == 404:
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Item {native_id} not found in {self.get_engine_name()}.")
        if response.status_code >= 300:
            raise BridgeError(
                ErrorKind.SOURCE_UNAVAILABLE,
                f"Fetching item {native_id} from {self.get_engine_name()} failed with status {response.status_code}.",
                {"status_code": response.status_code},
            )
        return response.json()

    async def do_fetch_source_item(self, native_id: str) -> SourceItem:
        """
        Fetch the current state of one item, including its full text.

        Args:
            native_id (str): ID of the item in the source system.

        Returns:
            SourceItem: The item with title, content, version and properties.

        Raises:
            BridgeError: SOURCE_ITEM_NOT_FOUND if the item is gone or archived.
            BridgeError: SOURCE_UNAVAILABLE if the source cannot be reached.
        """
        item_data = await self._do_fetch_item_data(native_id)
        if self._is_removed(item_data):
            raise BridgeError(ErrorKind.SOURCE_ITEM_NOT_FOUND, f"Item {native_id} was removed in {self.get_engine_name()}.")
        lines: list[str] = []
        cursor = None
        while True:
            page_lines, cursor = self._parse_content_page(await self._do_fetch_content_page(native_id, cursor))
            lines.extend(page_lines)
            if not cursor:
                break
        return self._parse_item(item_data, "\n".join(line for line in lines if line).strip())

    async def do_fetch_container_id(self, native_id: str) -> str | None:
        """
        Look up the container an item lives in.

        Raises:
            BridgeError: SOURCE_ITEM_NOT_FOUND if the item is gone.
        """
        return self._extract_container_id(await self._do_fetch_item_data(native_id))

    async def do_list_source_items(self, container_id: str) -> list[SourceListing]:
        """
        List every item of a container with its current version.

        Args:
            container_id (str): ID of the container (e.g. a Notion database).

        Returns:
            list[SourceListing]: All items, across all pages.

        Raises:
            BridgeError: SOURCE_UNAVAILABLE if any page cannot be fetched.
        """
        listings: list[SourceListing] = []
        cursor = None
        page = 1
        while True:
            page_listings, cursor = self._parse_listing_page(await self._do_fetch_listing_page(container_id, cursor))
            listings.extend(page_listings)
            self.logging.debug("Fetched listing page %d of container %s from %s, %d items so far", page, container_id, self.get_engine_name(), len(listings))
            if not cursor:
                break
            page += 1
        return listings
