from typing import Any

from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import BridgeError, ErrorKind
from shared.models.sync import SourceItem, SourceListing, WebhookAction, WebhookEvent

NOTION_VERSION = "2022-06-28"

# block types whose rich_text carries readable content
_TEXT_BLOCK_TYPES = {
    "paragraph",
    "heading_1",
    "heading_2",
    "heading_3",
    "bulleted_list_item",
    "numbered_list_item",
    "to_do",
    "toggle",
    "callout",
    "code",
}

_UPSERT_EVENTS = {"page.created", "page.updated", "page.content_updated", "page.properties_updated", "page.undeleted", "page.moved"}
_DELETE_EVENTS = {"page.deleted"}


class SourceClientNotion(SourceClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.notion.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._notion_version = self.get_config_val("VERSION", default=NOTION_VERSION, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Notion"

    def normalize_id(self, native_id: str) -> str:
        # notion accepts ids with and without dashes
        return native_id.strip().replace("-", "").lower()

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.notion.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="WEBHOOK_SECRET", val_type="string", default=""),
            EnvConfig(env_key="PAGE_SIZE", val_type="number", default=100),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        headers = {"Notion-Version": self._notion_version}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    ################ WEBHOOK ##################
    def get_signature_header(self) -> str:
        return "x-notion-signature"

    def get_timestamp_header(self) -> str:
        return "x-notion-timestamp"

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/users/me"

    def _get_endpoint_item(self, native_id: str) -> str:
        return f"/v1/pages/{native_id}"

    def _get_endpoint_item_content(self, native_id: str) -> str:
        return f"/v1/blocks/{native_id}/children"

    def _get_endpoint_container_listing(self, container_id: str) -> str:
        return f"/v1/databases/{container_id}/query"

    ##########################################
    ############### PARSERS ##################
    ##########################################

    def _rich_text_to_plain_text(self, rich_text: list[dict]) -> str:
        return "".join(part.get("plain_text") or "" for part in rich_text or [])

    def _block_to_text(self, block: dict) -> str:
        block_type = block.get("type")
        block_data = block.get(block_type) if block_type else None
        if not block_data:
            return ""
        if block_type in _TEXT_BLOCK_TYPES:
            text = self._rich_text_to_plain_text(block_data.get("rich_text", []))
            if block_type == "to_do":
                return f"[{'x' if block_data.get('checked') else ' '}] {text}"
            return text
        if block_type == "quote":
            return f"\"{self._rich_text_to_plain_text(block_data.get('rich_text', []))}\""
        return ""

    def _get_page_title(self, properties: dict) -> str:
        for value in properties.values():
            if value.get("type") == "title" and value.get("title"):
                return self._rich_text_to_plain_text(value["title"])
        return "Untitled"

    def _flatten_property(self, prop: dict) -> Any:
        prop_type = prop.get("type")
        value = prop.get(prop_type) if prop_type else None
        if value is None:
            return None
        if prop_type in ("title", "rich_text"):
            return self._rich_text_to_plain_text(value)
        if prop_type in ("select", "status"):
            return value.get("name")
        if prop_type == "multi_select":
            return [option.get("name") for option in value]
        if prop_type == "date":
            return value.get("start")
        if prop_type == "people":
            return [person.get("name") or person.get("id") for person in value]
        if prop_type in ("number", "checkbox", "url", "email", "phone_number", "created_time", "last_edited_time"):
            return value
        # formulas, relations and rollups are not flattened
        return None

    def _flatten_properties(self, properties: dict) -> dict[str, Any]:
        flat = {}
        for name, prop in properties.items():
            value = self._flatten_property(prop)
            if value not in (None, "", []):
                flat[name] = value
        return flat

    def _is_removed(self, item_data: dict) -> bool:
        return bool(item_data.get("archived") or item_data.get("in_trash"))

    def _parse_item(self, item_data: dict, content: str) -> SourceItem:
        properties = item_data.get("properties") or {}
        flat = self._flatten_properties(properties)
        if item_data.get("url"):
            flat["notion_url"] = item_data["url"]
        return SourceItem(
            source_native_id=item_data["id"],
            title=self._get_page_title(properties),
            content=content,
            version=item_data.get("last_edited_time") or "",
            container_id=self._extract_container_id(item_data),
            properties=flat,
        )

    def _parse_content_page(self, response_data: dict) -> tuple[list[str], str | None]:
        lines = [self._block_to_text(block) for block in response_data.get("results", [])]
        next_cursor = response_data.get("next_cursor") if response_data.get("has_more") else None
        return lines, next_cursor

    def _parse_listing_page(self, response_data: dict) -> tuple[list[SourceListing], str | None]:
        listings = [
            SourceListing(source_native_id=page["id"], version=page.get("last_edited_time") or "")
            for page in response_data.get("results", [])
            if page.get("object") == "page" and not self._is_removed(page)
        ]
        next_cursor = response_data.get("next_cursor") if response_data.get("has_more") else None
        return listings, next_cursor

    def _extract_container_id(self, item_data: dict) -> str | None:
        parent = item_data.get("parent") or {}
        return parent.get("database_id") or parent.get("data_source_id")

    def parse_webhook_event(self, payload: dict) -> WebhookEvent:
        """Map a Notion webhook delivery to a WebhookEvent.

        Handles the subscription handshake (verification_token / challenge),
        pings, and page events in both the entity/data and the legacy page shape.
        """
        handshake = payload.get("verification_token") or payload.get("challenge")
        if handshake:
            return WebhookEvent(type="verification", action=WebhookAction.IGNORE, challenge=handshake)

        event_type = payload.get("type") or ""
        if event_type == "ping":
            return WebhookEvent(type=event_type, action=WebhookAction.IGNORE)

        if event_type in _UPSERT_EVENTS:
            action = WebhookAction.UPSERT
        elif event_type in _DELETE_EVENTS:
            action = WebhookAction.DELETE
        else:
            self.logging.info("Ignoring Notion webhook event of type '%s'", event_type)
            return WebhookEvent(type=event_type or "unknown", action=WebhookAction.IGNORE)

        entity = payload.get("entity") or {}
        page = payload.get("page") or {}
        data = payload.get("data") or {}
        page_id = entity.get("id") or page.get("id")
        if not page_id:
            raise BridgeError(ErrorKind.INVALID_REQUEST, f"Invalid webhook: no page ID found for type {event_type}")

        data_parent = data.get("parent") or {}
        container_id = None
        if data_parent.get("type") in (None, "database", "data_source"):
            container_id = data_parent.get("id")
        container_id = container_id or self._extract_container_id(page)

        return WebhookEvent(type=event_type, action=action, source_native_id=page_id, container_id=container_id)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _do_fetch_content_page(self, native_id: str, cursor: str | None) -> dict:
        params = {"page_size": self.page_size}
        if cursor:
            params["start_cursor"] = cursor
        response = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_item_content(native_id),
            params=params,
            raise_on_error=True,
        )
        return response.json()

    async def _do_fetch_listing_page(self, container_id: str, cursor: str | None) -> dict:
        body: dict = {"page_size": self.page_size}
        if cursor:
            body["start_cursor"] = cursor
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_container_listing(container_id),
            json=body,
            raise_on_error=True,
        )
        return response.json()
