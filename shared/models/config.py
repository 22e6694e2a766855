from typing import Literal

from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    A configuration key a client declares as required.

    The full environment variable name is built by the client as
    {CLIENT_TYPE}_{ENGINE}_{env_key}, e.g. "SOURCE_NOTION_API_KEY".

    Attributes:
        env_key (str): The client-local key, e.g. "API_KEY".
        val_type (str): How the value is parsed: "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Fallback if unset. None makes the key mandatory.
    """

    env_key: str
    val_type: Literal["string", "number", "bool", "list"] = "string"
    default: str | int | float | bool | list | None = None
